from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from app.database import Base
from pydantic import BaseModel


class ApplicationStatus(str, Enum):
    APPLIED = "applied"
    INTERVIEW = "interview"
    HIRED = "hired"
    REJECTED = "rejected"


class Education(str, Enum):
    INTERMEDIATE = "Intermediate"
    GRADUATE = "Graduate"
    POST_GRADUATE = "Post Graduate"


APPLICATION_STATUSES = [s.value for s in ApplicationStatus]
EDUCATION_LEVELS = [e.value for e in Education]


class StatusUpdateRequest(BaseModel):
    status: Optional[str] = None


def _in_list(column: str, values) -> str:
    quoted = ", ".join(f"'{v}'" for v in values)
    return f"{column} IN ({quoted})"


class Application(Base):
    __tablename__ = "applications"
    __table_args__ = (
        UniqueConstraint("job_id", "candidate_id", name="applications_job_id_candidate_id_key"),
        CheckConstraint(_in_list("status", APPLICATION_STATUSES), name="applications_status_check"),
        CheckConstraint(_in_list("education", EDUCATION_LEVELS), name="applications_education_check"),
        CheckConstraint("experience >= 0", name="applications_experience_check"),
    )

    id = Column(Integer, primary_key=True, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    candidate_id = Column(String, ForeignKey("profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=True)
    status = Column(String, nullable=False, server_default=ApplicationStatus.APPLIED.value)
    experience = Column(Integer, nullable=False, server_default="0")
    skills = Column(Text, nullable=True)
    education = Column(String, nullable=False, server_default=Education.GRADUATE.value)
    resume = Column(String, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

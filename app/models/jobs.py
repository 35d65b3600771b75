from typing import Any, Optional, Union

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import expression, func
from app.database import Base
from pydantic import BaseModel


class JobCreateRequest(BaseModel):
    # Everything optional: the repository reports every missing field at once
    title: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    requirements: Optional[str] = None
    company_id: Optional[Union[int, str]] = None
    recruiter_id: Optional[str] = None
    isOpen: Optional[bool] = None


class HiringStatusRequest(BaseModel):
    # Checked for a genuine boolean by the repository, not coerced here
    isOpen: Any = None
    recruiter_id: Optional[str] = None


class SaveJobRequest(BaseModel):
    user_id: Optional[str] = None
    already_saved: bool = False


class Job(Base):
    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False)
    location = Column(String, nullable=False)
    requirements = Column(Text, nullable=True)
    company_id = Column(Integer, ForeignKey("companies.id"), nullable=False, index=True)
    recruiter_id = Column(String, nullable=False, index=True)
    is_open = Column("isOpen", Boolean, nullable=False, server_default=expression.true())
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SavedJob(Base):
    __tablename__ = "saved_jobs"
    __table_args__ = (
        UniqueConstraint("user_id", "job_id", name="saved_jobs_user_id_job_id_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String, nullable=False, index=True)
    job_id = Column(Integer, ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

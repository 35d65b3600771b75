from sqlalchemy import Column, String, DateTime
from sqlalchemy.sql import func
from app.database import Base


class Profile(Base):
    """Candidate/recruiter profile keyed by the identity provider's user id."""

    __tablename__ = "profiles"

    id = Column(String, primary_key=True)
    full_name = Column(String, nullable=True)
    email = Column(String, nullable=True)
    phone = Column(String, nullable=True)
    role = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

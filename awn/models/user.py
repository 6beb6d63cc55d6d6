"""User model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from awn.database import Base


class User(Base):
    """Represents an authenticated account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String, default="patient")  # patient/therapist
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=True)

"""Therapist model definitions."""

from sqlalchemy import Boolean, Column, Integer, String
from awn.database import Base


class Therapist(Base):
    """Represents a physiotherapist listed in the directory."""
    __tablename__ = "therapists"

    id = Column(Integer, primary_key=True)
    slug = Column(String, unique=True, index=True)
    name_ar = Column(String)
    name_en = Column(String)
    avatar_url = Column(String)
    is_active = Column(Boolean, default=True)

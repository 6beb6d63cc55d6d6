"""Appointment model definitions."""

from datetime import datetime

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, text
from awn.database import Base


class Appointment(Base):
    """Represents a session booked from the patient dashboard."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "therapist_id",
            "date",
            "time",
            unique=True,
            sqlite_where=text("status = 'upcoming'"),
            postgresql_where=text("status = 'upcoming'"),
        ),
        Index("idx_appointments_patient_date", "patient_id", "date", "time"),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    kind = Column(String, default="home")
    status = Column(String, default="upcoming")
    patient_notes = Column(String)
    notes = Column(String)
    meet_link = Column(String)
    rating = Column(Integer)
    feedback_text = Column(String)
    feedback_ratings = Column(JSON)
    feedback_submitted_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(String)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

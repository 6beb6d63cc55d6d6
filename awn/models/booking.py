"""Booking model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, text
from awn.database import Base


class Booking(Base):
    """Represents a session requested through the guest booking flow."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            "uq_bookings_active_slot",
            "therapist_id",
            "booking_date",
            "booking_time",
            unique=True,
            sqlite_where=text("status IN ('pending', 'confirmed')"),
            postgresql_where=text("status IN ('pending', 'confirmed')"),
        ),
        Index("idx_bookings_user_email", "user_email"),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False)
    patient_national_id = Column(String)
    user_name = Column(String)
    user_email = Column(String, nullable=False)
    user_phone = Column(String)
    patient_date_of_birth = Column(Date)
    booking_date = Column(Date, nullable=False)
    booking_time = Column(Time, nullable=False)
    session_type = Column(String, default="home")
    session_duration = Column(Integer, default=60)
    notes = Column(String)
    status = Column(String, default="pending")
    confirmed_at = Column(DateTime)
    confirmed_by = Column(Integer)
    cancelled_at = Column(DateTime)
    cancellation_reason = Column(String)
    cancelled_by = Column(String)
    rescheduled_from = Column(Integer)
    rescheduled_to = Column(Integer)
    created_at = Column(DateTime, default=datetime.now)
    updated_at = Column(DateTime, default=datetime.now, onupdate=datetime.now)

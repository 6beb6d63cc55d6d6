"""Slot reservation model definitions."""

from datetime import datetime

from sqlalchemy import Column, Date, DateTime, ForeignKey, Integer, String, Time, UniqueConstraint
from awn.database import Base


class SlotReservation(Base):
    """Claims one therapist slot for one active appointment or booking.

    Both stores write here in the same transaction as their own row, so the
    unique constraint holds across the two tables.
    """
    __tablename__ = "slot_reservations"
    __table_args__ = (
        UniqueConstraint("therapist_id", "slot_date", "slot_time", name="uq_slot_reservations_active_slot"),
        UniqueConstraint("source", "record_id", name="uq_slot_reservations_record"),
    )

    id = Column(Integer, primary_key=True)
    therapist_id = Column(Integer, ForeignKey("therapists.id"), nullable=False)
    slot_date = Column(Date, nullable=False)
    slot_time = Column(Time, nullable=False)
    source = Column(String, nullable=False)  # appointments/bookings
    record_id = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=datetime.now)

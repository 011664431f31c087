from sqlalchemy import Column, Integer, String, Text, Boolean, Date, DateTime, JSON, Index
from sqlalchemy.sql import func
from apps.core.db import Base


class _ScheduleMixin:
    """Schedule columns shared by promotions and events"""

    id = Column(Integer, primary_key=True, index=True)
    place_id = Column(String(255), nullable=False)  # provider place id
    title = Column(Text, nullable=False)
    description = Column(Text, nullable=True)

    # Either recurring on weekday names ("Monday", ...) or a single date
    recurring = Column(Boolean, nullable=False, default=False)
    recurring_days = Column(JSON, nullable=True)
    date = Column(Date, nullable=True)

    all_day = Column(Boolean, nullable=False, default=False)
    start_time = Column(String(5), nullable=True)  # "HH:MM" local time
    end_time = Column(String(5), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "placeId": self.place_id,
            "title": self.title,
            "description": self.description,
            "recurring": bool(self.recurring),
            "recurringDays": list(self.recurring_days or []),
            "date": self.date.isoformat() if self.date else None,
            "allDay": bool(self.all_day),
            "startTime": self.start_time,
            "endTime": self.end_time,
        }


class Promotion(_ScheduleMixin, Base):
    __tablename__ = "promotions"
    __table_args__ = (Index("ix_promotions_place_id", "place_id"),)


class Event(_ScheduleMixin, Base):
    __tablename__ = "events"
    __table_args__ = (Index("ix_events_place_id", "place_id"),)

"""Watering event audit model."""
from sqlalchemy import Column, Integer, String, DateTime, Enum
from irrigation_hub.config.database import Base
import enum


class WateringResult(enum.Enum):
    """Outcome of a pulse attempt."""
    OK = "ok"
    REFUSED = "refused"
    FAILED = "failed"
    STOPPED = "stopped"


class WateringEvent(Base):
    """Immutable audit record of one pulse attempt."""
    __tablename__ = 'watering_events'

    id = Column(Integer, primary_key=True, index=True)
    ts_start = Column(DateTime(timezone=True), nullable=False, index=True)
    ts_end = Column(DateTime(timezone=True), nullable=True)
    zone_id = Column(String(50), nullable=False, index=True)
    reason = Column(String(100), nullable=False)  # 'below_min', 'soak_continue', 'manual', 'limit_reached:<why>'
    result = Column(Enum(WateringResult), nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'ts_start': self.ts_start.isoformat() if self.ts_start else None,
            'ts_end': self.ts_end.isoformat() if self.ts_end else None,
            'zone_id': self.zone_id,
            'reason': self.reason,
            'result': self.result.value,
        }

    def __repr__(self):
        return f"<WateringEvent(zone={self.zone_id}, reason={self.reason}, result={self.result.value})>"

"""Per-zone, per-day safety counters."""
from sqlalchemy import Column, Integer, String
from irrigation_hub.config.database import Base


class DailyCounter(Base):
    """Valve usage of one zone on one day."""
    __tablename__ = 'zone_daily_counters'

    day = Column(String(10), primary_key=True)  # YYYY-MM-DD in the ledger timezone
    zone_id = Column(String(50), primary_key=True)
    open_sec = Column(Integer, nullable=False, default=0)
    pulses = Column(Integer, nullable=False, default=0)

    def __repr__(self):
        return f"<DailyCounter(day={self.day}, zone={self.zone_id}, open_sec={self.open_sec}, pulses={self.pulses})>"

"""Calibrated sensor reading history."""
from sqlalchemy import Column, Integer, String, Float, DateTime
from irrigation_hub.config.database import Base


class ReadingRecord(Base):
    """One calibrated reading, buffered by ingestion and flushed periodically."""
    __tablename__ = 'readings'

    id = Column(Integer, primary_key=True, index=True)
    ts = Column(DateTime(timezone=True), nullable=False, index=True)  # hub receive time
    sensor_id = Column(String(100), nullable=False, index=True)
    raw = Column(Integer, nullable=False)
    moisture = Column(Float, nullable=False)  # 0.0 - 1.0

    def to_dict(self):
        return {
            'ts': self.ts.isoformat() if self.ts else None,
            'sensor_id': self.sensor_id,
            'raw': self.raw,
            'moisture': self.moisture,
        }

    def __repr__(self):
        return f"<ReadingRecord(sensor={self.sensor_id}, raw={self.raw}, moisture={self.moisture:.3f})>"

"""System log model for durable operator-visible alarms and errors."""
from sqlalchemy import Column, Integer, String, DateTime, Enum
from sqlalchemy.sql import func
from irrigation_hub.config.database import Base
import enum


class LogLevel(enum.Enum):
    """Log level enumeration."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class SystemLog(Base):
    """Model for storing system logs."""
    __tablename__ = 'system_logs'

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    log_level = Column(Enum(LogLevel), nullable=False, index=True)
    component = Column(String(50), nullable=False, index=True)  # e.g. 'fail_safe', 'scheduler', 'ingestion'
    message = Column(String(1000), nullable=False)
    zone_id = Column(String(50), nullable=True, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'timestamp': self.timestamp.isoformat() if self.timestamp else None,
            'log_level': self.log_level.value,
            'component': self.component,
            'message': self.message,
            'zone_id': self.zone_id,
        }

    def __repr__(self):
        return f"<SystemLog(id={self.id}, level={self.log_level.value}, component={self.component}, message={self.message[:50]}...)>"

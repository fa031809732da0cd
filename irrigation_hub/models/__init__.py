"""Database models package."""
from irrigation_hub.models.reading import ReadingRecord
from irrigation_hub.models.watering_event import WateringEvent, WateringResult
from irrigation_hub.models.daily_counter import DailyCounter
from irrigation_hub.models.system_log import SystemLog, LogLevel

__all__ = [
    'ReadingRecord',
    'WateringEvent',
    'WateringResult',
    'DailyCounter',
    'SystemLog',
    'LogLevel',
]

from .realtime_service import RealtimeService
from .record_service import RecordService

__all__ = ["RealtimeService", "RecordService"]

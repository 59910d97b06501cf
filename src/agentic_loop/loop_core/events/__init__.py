from .models import EngineEvent, EventType
from .sink import EventSink, EventBuffer

__all__ = ["EngineEvent", "EventType", "EventSink", "EventBuffer"]

from .models import PushSignal, PushSignalType
from .channel import PushUpdateChannel
from .memory_channel import MemoryPushChannel
from .sse_channel import SSEPushChannel

__all__ = [
    "PushSignal",
    "PushSignalType",
    "PushUpdateChannel",
    "MemoryPushChannel",
    "SSEPushChannel",
]

"""Transport module."""

from .batch_sender import BatchSender, DeliveryResult, IBatchSender, SenderStats
from .realtime import ChannelState, IRealtimeChannel, RealtimeChannel

__all__ = [
    "BatchSender",
    "DeliveryResult",
    "IBatchSender",
    "SenderStats",
    "ChannelState",
    "IRealtimeChannel",
    "RealtimeChannel",
]

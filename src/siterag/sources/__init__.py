"""External context sources: channel history and task trackers."""

from .slack import ChannelHistoryProvider, ProviderError, SlackHistoryProvider, StaticChannelHistory
from .tasks import AsanaTaskProvider, StaticTaskTracker, TaskTrackerProvider, today_utc

__all__ = [
    "AsanaTaskProvider",
    "ChannelHistoryProvider",
    "ProviderError",
    "SlackHistoryProvider",
    "StaticChannelHistory",
    "StaticTaskTracker",
    "TaskTrackerProvider",
    "today_utc",
]

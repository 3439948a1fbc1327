"""reelrank package

An online ranking engine that learns, one decision at a time, which media
files a user keeps, and presents the likeliest keeper next.  Public classes
are re-exported here for convenience.
"""

from .config_service import ConfigService, SessionConfig  # noqa: F401
from .playlist import M3uPlaylist, PersistenceError  # noqa: F401
from .playback import FeedbackError, Outcome, VlcFeedback  # noqa: F401
from .session import Session  # noqa: F401

__all__ = [
    "ConfigService",
    "SessionConfig",
    "M3uPlaylist",
    "PersistenceError",
    "FeedbackError",
    "Outcome",
    "VlcFeedback",
    "Session",
]

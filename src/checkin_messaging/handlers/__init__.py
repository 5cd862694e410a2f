from .base import MessageHandler
from .checkin import CheckinEventHandler
from .keys import KeyBuilder

__all__ = ["CheckinEventHandler", "KeyBuilder", "MessageHandler"]

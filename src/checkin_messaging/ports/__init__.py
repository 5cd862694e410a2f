from .cache import ICacheInvalidator, IKeyValueCache
from .handler import IMessageHandler

__all__ = ["ICacheInvalidator", "IKeyValueCache", "IMessageHandler"]

from .outbox import MAX_CHUNK, NotificationForwarder, Outbox

__all__ = ["MAX_CHUNK", "NotificationForwarder", "Outbox"]

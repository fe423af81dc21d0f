from app.realtime.hub import NotificationHub

__all__ = ["NotificationHub"]

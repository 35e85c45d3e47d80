from app.models.user import User
from app.models.video import Video, VideoStatus, Visibility
from app.models.watch import WatchSession
from app.models.view import View

__all__ = ["User", "Video", "VideoStatus", "Visibility", "WatchSession", "View"]

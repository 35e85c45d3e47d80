"""Uploaded video. Status/metadata belong to the upload pipeline; name/description/visibility to settings updates."""
import enum
from datetime import datetime
from sqlalchemy import Column, BigInteger, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from app.database import Base


class VideoStatus(enum.IntEnum):
    EMPTY = 0
    UPLOADING = 1
    PROCESSING = 2
    COMPLETE = 3


class Visibility(enum.IntEnum):
    PRIVATE = 0
    UNLISTED = 1
    PUBLIC = 2


class Video(Base):
    __tablename__ = "videos"

    id = Column(BigInteger, primary_key=True, autoincrement=False)
    creator_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    name = Column(String(256), nullable=False, default="Untitled")
    description = Column(Text, nullable=False, default="")
    visibility = Column(Integer, nullable=False, default=Visibility.PRIVATE.value)
    status = Column(Integer, nullable=False, default=VideoStatus.EMPTY.value, index=True)
    mime_type = Column(String(100), nullable=True)  # from ffprobe, never from the client
    duration_secs = Column(Integer, nullable=False, default=0)
    size_bytes = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    creator = relationship("User", lazy="joined")

    def is_creator(self, user) -> bool:
        return user is not None and self.creator_id == user.id

"""A user's single active watch session. Reset in place when the user switches video."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, DateTime, ForeignKey
from app.database import Base


class WatchSession(Base):
    __tablename__ = "watches"

    user_id = Column(BigInteger, ForeignKey("users.id"), primary_key=True, autoincrement=False)
    video_id = Column(BigInteger, ForeignKey("videos.id"), nullable=False)
    view_id = Column(BigInteger, nullable=False, unique=True)
    started_at = Column(DateTime, nullable=False)
    bytes_streamed = Column(BigInteger, nullable=False, default=0)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

"""Counted views. One row per watch session (view_id) at most."""
from datetime import datetime
from sqlalchemy import Column, BigInteger, DateTime, ForeignKey
from app.database import Base


class View(Base):
    __tablename__ = "views"

    view_id = Column(BigInteger, primary_key=True, autoincrement=False)
    video_id = Column(BigInteger, ForeignKey("videos.id"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

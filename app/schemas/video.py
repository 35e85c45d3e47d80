from pydantic import BaseModel, Field
from app.models.video import Visibility
from app.schemas.user import UserInfo


class VideoCreatedInfo(BaseModel):
    id: str
    name: str
    description: str
    visibility: Visibility


class VideoUpdateInfo(BaseModel):
    name: str = Field(min_length=2, max_length=256)
    description: str
    visibility: Visibility


class VideoInfo(BaseModel):
    id: str
    creator: UserInfo
    duration_secs: int
    name: str
    description: str
    visibility: Visibility
    views: int
    likes: int = 0
    dislikes: int = 0

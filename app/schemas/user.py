from datetime import datetime
from pydantic import BaseModel, Field


class UserCreate(BaseModel):
    username: str = Field(min_length=2, max_length=32)
    email: str = Field(min_length=3, max_length=255)
    password: str


class UserResponse(BaseModel):
    id: str
    username: str
    email: str
    created_at: datetime


class UserInfo(BaseModel):
    """Public view of a user, embedded in video listings."""
    id: str
    username: str


class TokenPayload(BaseModel):
    sub: str  # user id
    username: str
    exp: int
    type: str = "access"


class LoginRequest(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"

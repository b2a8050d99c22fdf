from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from app.modules.auth.models import UserRole

class UserBase(BaseModel):
    username: str = Field(min_length=1, max_length=64)

class UserCreate(UserBase):
    password: str = Field(min_length=1)

class LoginRequest(BaseModel):
    username: str
    password: str

class UserRead(UserBase):
    id: str
    role: UserRole = UserRole.USER
    credits: int = 0
    created_at: datetime

    class Config:
        from_attributes = True

class UserInDB(UserRead):
    hashed_password: str

class Token(BaseModel):
    access_token: str
    token_type: str

class TokenData(BaseModel):
    id: Optional[str] = None

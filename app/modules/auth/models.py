import uuid
from sqlalchemy import Column, String, Integer, DateTime, Enum, CheckConstraint
from app.core.db import Base
import enum

class UserRole(str, enum.Enum):
    USER = "user"
    ADMIN = "admin"

def new_id() -> str:
    return str(uuid.uuid4())

class User(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    username = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(Enum(UserRole), default=UserRole.USER, nullable=False)
    credits = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

class AdminBootstrap(Base):
    """Single-row claim taken by the account that becomes the store's first admin."""
    __tablename__ = "admin_bootstrap"

    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), nullable=False)
    claimed_at = Column(DateTime(timezone=True), nullable=False)

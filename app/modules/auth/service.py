import logging
from typing import Optional
from app.core import security
from app.core.errors import Unauthorized, ValidationFailed
from app.core.storage import Storage
from app.modules.auth import schemas
from app.modules.auth.models import UserRole

logger = logging.getLogger(__name__)

async def register_user(storage: Storage, user_in: schemas.UserCreate) -> schemas.UserInDB:
    if await storage.get_user_by_username(user_in.username):
        raise ValidationFailed("Username already exists")

    # The store makes the first account on a fresh store its admin
    user = await storage.register_user(
        username=user_in.username,
        hashed_password=security.get_password_hash(user_in.password),
    )
    logger.info(f"Registered user {user.id} ({user.username}) as {user.role.value}")
    return user

async def authenticate(storage: Storage, username: str, password: str) -> schemas.UserInDB:
    user = await storage.get_user_by_username(username)
    if not user or not security.verify_password(password, user.hashed_password):
        raise Unauthorized("Incorrect username or password")
    return user

async def ensure_admin(storage: Storage, username: str, password: str) -> Optional[schemas.UserInDB]:
    """Create the bootstrap admin unless the username already exists."""
    if await storage.get_user_by_username(username):
        return None
    admin = await storage.create_user(
        username=username,
        hashed_password=security.get_password_hash(password),
        role=UserRole.ADMIN,
    )
    logger.info(f"Created bootstrap admin {admin.id} ({admin.username})")
    return admin

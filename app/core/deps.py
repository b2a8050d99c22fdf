from fastapi import Depends, Request
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError
from typing import Optional
from app.core.config import settings
from app.core import security
from app.core.errors import Forbidden, Unauthorized
from app.core.storage import Storage
from app.modules.auth.models import UserRole
from app.modules.auth.schemas import UserInDB, TokenData

# auto_error=False so anonymous requests reach the optional dependency
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.API_PREFIX}/login", auto_error=False)

def get_storage(request: Request) -> Storage:
    return request.app.state.storage

async def _resolve_user(token: Optional[str], storage: Storage) -> Optional[UserInDB]:
    if not token:
        return None
    try:
        token_data = TokenData(id=security.decode_access_token(token))
    except JWTError:
        return None
    if token_data.id is None:
        return None
    return await storage.get_user(token_data.id)

async def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    storage: Storage = Depends(get_storage),
) -> UserInDB:
    user = await _resolve_user(token, storage)
    if user is None:
        raise Unauthorized("Could not validate credentials")
    return user

async def get_current_user_optional(
    token: Optional[str] = Depends(oauth2_scheme),
    storage: Storage = Depends(get_storage),
) -> Optional[UserInDB]:
    return await _resolve_user(token, storage)

async def get_current_admin(
    current_user: UserInDB = Depends(get_current_user),
) -> UserInDB:
    if current_user.role != UserRole.ADMIN:
        raise Forbidden("Admin only")
    return current_user

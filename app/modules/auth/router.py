from typing import Any, Optional
from fastapi import APIRouter, Depends, status

from app.core import deps
from app.core import security
from app.core.storage import Storage
from app.modules.auth import schemas, service

router = APIRouter()

@router.post("/register", response_model=schemas.UserRead, status_code=status.HTTP_201_CREATED)
async def register_user(
    user_in: schemas.UserCreate,
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.register_user(storage, user_in)

@router.post("/login", response_model=schemas.Token)
async def login_access_token(
    login_in: schemas.LoginRequest,
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    user = await service.authenticate(storage, login_in.username, login_in.password)
    access_token = security.create_access_token(subject=user.id)
    return {
        "access_token": access_token,
        "token_type": "bearer"
    }

@router.get("/user", response_model=Optional[schemas.UserRead])
async def read_current_user(
    current_user: Optional[schemas.UserInDB] = Depends(deps.get_current_user_optional),
) -> Any:
    """
    Current user, or null for anonymous callers.
    """
    return current_user

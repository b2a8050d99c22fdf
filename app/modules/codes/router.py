from typing import Any, List
from fastapi import APIRouter, Depends, status

from app.core import deps
from app.core.storage import Storage
from app.modules.auth.schemas import UserInDB
from app.modules.codes import schemas, service

router = APIRouter()

@router.get("", response_model=List[schemas.RedeemCodeRead])
async def list_codes(
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.list_codes(storage)

@router.post("", response_model=List[schemas.GeneratedCode], status_code=status.HTTP_201_CREATED)
async def generate_codes(
    code_in: schemas.CodeGenerate,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.generate_codes(storage, code_in, current_user)

@router.post("/redeem", response_model=schemas.RedeemResponse)
async def redeem_code(
    redeem_in: schemas.CodeRedeem,
    current_user: UserInDB = Depends(deps.get_current_user),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.redeem(storage, current_user, redeem_in)

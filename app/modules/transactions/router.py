from typing import Any, List
from fastapi import APIRouter, Depends, status

from app.core import deps
from app.core.storage import Storage
from app.modules.auth.schemas import UserInDB
from app.modules.transactions import schemas, service

router = APIRouter()

@router.get("", response_model=List[schemas.TransactionRead])
async def list_transactions(
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.list_transactions(storage)

@router.post("", response_model=schemas.TransactionRead, status_code=status.HTTP_201_CREATED)
async def submit_transaction(
    tx_in: schemas.TransactionCreate,
    current_user: UserInDB = Depends(deps.get_current_user),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.create_transaction(storage, current_user, tx_in)

@router.patch("/{tx_id}", response_model=schemas.TransactionRead)
async def update_transaction_amount(
    tx_id: str,
    update_in: schemas.TransactionAmountUpdate,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.update_amount(storage, tx_id, update_in.amount, current_user)

@router.post("/{tx_id}/approve", response_model=schemas.TransactionRead)
async def approve_transaction(
    tx_id: str,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.approve(storage, tx_id, current_user)

@router.post("/{tx_id}/reject", response_model=schemas.TransactionRead)
async def reject_transaction(
    tx_id: str,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.reject(storage, tx_id, current_user)

from typing import Any, List, Optional
from fastapi import APIRouter, Depends, status

from app.core import deps
from app.core.storage import Storage
from app.modules.auth.schemas import UserInDB
from app.modules.items import schemas, service

router = APIRouter()

@router.get("", response_model=List[schemas.ItemSummary])
async def list_items(
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.list_items(storage)

@router.get("/{item_id}", response_model=schemas.ItemRead)
async def get_item(
    item_id: str,
    current_user: Optional[UserInDB] = Depends(deps.get_current_user_optional),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.get_item_for_viewer(storage, item_id, current_user)

@router.post("", response_model=schemas.ItemRead, status_code=status.HTTP_201_CREATED)
async def create_item(
    item_in: schemas.ItemCreate,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.create_item(storage, item_in, current_user)

@router.delete("/{item_id}")
async def delete_item(
    item_id: str,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    await service.delete_item(storage, item_id, current_user)
    return {"message": "Item deleted"}

@router.post("/{item_id}/purchase", response_model=schemas.PurchaseResponse)
async def purchase_item(
    item_id: str,
    current_user: UserInDB = Depends(deps.get_current_user),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.purchase_item(storage, current_user.id, item_id)

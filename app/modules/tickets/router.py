from typing import Any, List
from fastapi import APIRouter, Depends, status

from app.core import deps
from app.core.storage import Storage
from app.modules.auth.schemas import UserInDB
from app.modules.tickets import schemas, service

router = APIRouter()

@router.get("", response_model=List[schemas.TicketRead])
async def list_tickets(
    current_user: UserInDB = Depends(deps.get_current_user),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.list_tickets_for(storage, current_user)

@router.post("", response_model=schemas.TicketRead, status_code=status.HTTP_201_CREATED)
async def open_ticket(
    ticket_in: schemas.TicketCreate,
    current_user: UserInDB = Depends(deps.get_current_user),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.create_ticket(storage, current_user, ticket_in)

@router.post("/{ticket_id}/reply", response_model=schemas.TicketRead)
async def reply_ticket(
    ticket_id: str,
    reply_in: schemas.TicketReply,
    current_user: UserInDB = Depends(deps.get_current_admin),
    storage: Storage = Depends(deps.get_storage)
) -> Any:
    return await service.reply(storage, ticket_id, reply_in, current_user)

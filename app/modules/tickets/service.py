import logging
from typing import List
from app.core.storage import Storage
from app.modules.auth.models import UserRole
from app.modules.auth.schemas import UserInDB
from app.modules.tickets import schemas

logger = logging.getLogger(__name__)

async def list_tickets_for(storage: Storage, user: UserInDB) -> List[schemas.TicketRead]:
    """Admins see every ticket, everyone else only their own."""
    if user.role == UserRole.ADMIN:
        return await storage.list_tickets()
    return await storage.list_tickets(user_id=user.id)

async def create_ticket(storage: Storage, user: UserInDB, ticket_in: schemas.TicketCreate) -> schemas.TicketRead:
    ticket = await storage.create_ticket(user.id, ticket_in)
    logger.info(f"User {user.id} opened ticket {ticket.id}")
    return ticket

async def reply(storage: Storage, ticket_id: str, reply_in: schemas.TicketReply, admin: UserInDB) -> schemas.TicketRead:
    ticket = await storage.update_ticket_reply(ticket_id, reply_in.reply)
    logger.info(f"Admin {admin.id} replied to ticket {ticket.id}; ticket closed")
    return ticket

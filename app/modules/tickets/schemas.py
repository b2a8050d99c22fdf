from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field
from app.modules.tickets.models import TicketStatus

class TicketCreate(BaseModel):
    subject: str = Field(min_length=1)
    message: str = Field(min_length=1)

class TicketReply(BaseModel):
    reply: str = Field(min_length=1)

class TicketRead(BaseModel):
    id: str
    user_id: str
    subject: str
    message: str
    status: TicketStatus
    reply: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True

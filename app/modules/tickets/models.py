from sqlalchemy import Column, String, DateTime, Enum, ForeignKey, Text
from app.core.db import Base
from app.modules.auth.models import new_id
import enum

class TicketStatus(str, enum.Enum):
    OPEN = "open"
    CLOSED = "closed"

class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    subject = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    status = Column(Enum(TicketStatus), default=TicketStatus.OPEN, nullable=False)
    reply = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)

from sqlalchemy import Column, String, Integer, DateTime, Enum, ForeignKey
from app.core.db import Base
from app.modules.auth.models import new_id
import enum

class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    transaction_id = Column(String, nullable=False) # External payment reference
    amount = Column(Integer, nullable=False)
    status = Column(Enum(TransactionStatus), default=TransactionStatus.PENDING, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)

from datetime import datetime
from pydantic import BaseModel, Field
from app.modules.transactions.models import TransactionStatus

class TransactionCreate(BaseModel):
    transaction_id: str = Field(min_length=1)
    amount: int = Field(gt=0)

class TransactionAmountUpdate(BaseModel):
    amount: int = Field(gt=0)

class TransactionRead(BaseModel):
    id: str
    user_id: str
    transaction_id: str
    amount: int
    status: TransactionStatus
    created_at: datetime

    class Config:
        from_attributes = True

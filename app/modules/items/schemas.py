from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator
from app.modules.items.models import ItemType

class ItemBase(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    price: int = Field(ge=0)
    type: ItemType

class ItemCreate(ItemBase):
    content: Optional[str] = None
    contents: Optional[List[str]] = None

    @model_validator(mode="after")
    def check_deliverable(self):
        # FULL carries one content string, SEQUENTIAL an ordered list of pages
        if self.type == ItemType.FULL:
            if self.content is None or self.contents is not None:
                raise ValueError("full items take 'content' and no 'contents'")
        else:
            if not self.contents or self.content is not None:
                raise ValueError("sequential items take a non-empty 'contents' and no 'content'")
        return self

class ItemSummary(ItemBase):
    """Public listing view, never carries deliverable content."""
    id: str
    page_count: Optional[int] = None
    created_at: datetime

class ItemRead(ItemBase):
    id: str
    content: Optional[str] = None
    contents: Optional[List[str]] = None
    created_at: datetime

    class Config:
        from_attributes = True

    def summary(self) -> ItemSummary:
        return ItemSummary(
            id=self.id,
            title=self.title,
            description=self.description,
            price=self.price,
            type=self.type,
            page_count=len(self.contents) if self.contents is not None else None,
            created_at=self.created_at,
        )

class PurchaseRead(BaseModel):
    id: str
    user_id: str
    item_id: str
    page: int = 0
    price: int
    content_delivered: str
    purchased_at: datetime

    class Config:
        from_attributes = True

class PurchaseResponse(BaseModel):
    message: str
    content: str
    page: Optional[int] = None # 1-based, sequential items only
    credits: int

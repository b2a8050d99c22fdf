from sqlalchemy import Column, String, Integer, DateTime, Enum, ForeignKey, Text, JSON, UniqueConstraint, PrimaryKeyConstraint
from app.core.db import Base
from app.modules.auth.models import new_id
import enum

class ItemType(str, enum.Enum):
    FULL = "full"
    SEQUENTIAL = "sequential"

class Item(Base):
    __tablename__ = "items"

    id = Column(String(36), primary_key=True, default=new_id)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Integer, nullable=False, default=0)
    type = Column(Enum(ItemType), nullable=False)

    content = Column(Text, nullable=True) # FULL only
    contents = Column(JSON, nullable=True) # SEQUENTIAL only, ordered pages

    created_at = Column(DateTime(timezone=True), nullable=False)

class Purchase(Base):
    __tablename__ = "purchases"

    # No FK to items: deleting an item keeps its purchase log
    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    item_id = Column(String(36), nullable=False, index=True)
    page = Column(Integer, nullable=False, default=0)
    price = Column(Integer, nullable=False)
    content_delivered = Column(Text, nullable=False)

    purchased_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "item_id", "page", name="uq_purchase_user_item_page"),
    )

class ItemProgress(Base):
    """Per (user, item) cursor: number of pages delivered so far."""
    __tablename__ = "item_progress"

    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    item_id = Column(String(36), nullable=False)
    delivered = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        PrimaryKeyConstraint("user_id", "item_id"),
    )

"""
Catalogue reads and the purchase flow.

Paid content is only handed out to buyers (and admins). A ``full`` item is
bought once and delivers its single content string. A ``sequential`` item is
bought page by page: every purchase charges the item price and delivers the
next page the buyer has not seen, tracked by the store's per (user, item)
progress counter.
"""
import logging
from typing import List, Optional
from app.core.errors import AlreadyPurchased, Forbidden, InsufficientCredits, NotFound, ValidationFailed
from app.core.storage import Storage
from app.modules.auth.models import UserRole
from app.modules.auth.schemas import UserInDB
from app.modules.items import schemas
from app.modules.items.models import ItemType

logger = logging.getLogger(__name__)

async def list_items(storage: Storage) -> List[schemas.ItemSummary]:
    return [item.summary() for item in await storage.list_items()]

async def create_item(storage: Storage, item_in: schemas.ItemCreate, admin: UserInDB) -> schemas.ItemRead:
    item = await storage.create_item(item_in)
    logger.info(f"Admin {admin.id} created item {item.id} ({item.type.value}, price {item.price})")
    return item

async def delete_item(storage: Storage, item_id: str, admin: UserInDB) -> None:
    await storage.delete_item(item_id)
    logger.info(f"Admin {admin.id} deleted item {item_id}")

async def get_item_for_viewer(
    storage: Storage,
    item_id: str,
    viewer: Optional[UserInDB],
) -> schemas.ItemRead:
    item = await storage.get_item(item_id)
    if not item:
        raise NotFound("Item not found")

    if item.price == 0:
        return item
    if viewer is None:
        raise Forbidden("You must purchase this item first")
    if viewer.role == UserRole.ADMIN:
        return item
    if not await storage.has_purchased(viewer.id, item.id):
        raise Forbidden("You must purchase this item first")

    if item.type == ItemType.SEQUENTIAL:
        delivered = await storage.get_purchase_progress(viewer.id, item.id)
        item.contents = (item.contents or [])[:delivered]
    return item

async def purchase_item(storage: Storage, user_id: str, item_id: str) -> schemas.PurchaseResponse:
    item = await storage.get_item(item_id)
    if not item:
        raise NotFound("Item not found")
    user = await storage.get_user(user_id)
    if not user:
        raise NotFound("User not found")

    if item.type == ItemType.SEQUENTIAL:
        pages = item.contents or []
        page = await storage.get_purchase_progress(user.id, item.id)
        if page >= len(pages):
            raise ValidationFailed("All pages of this item have already been delivered")
        content = pages[page]
    else:
        if await storage.has_purchased(user.id, item.id):
            raise AlreadyPurchased()
        page = 0
        content = item.content or ""

    if user.credits < item.price:
        raise InsufficientCredits()

    purchase, user = await storage.record_purchase(user.id, item.id, item.price, content, page)
    logger.info(
        f"User {user.id} bought item {item.id} page {purchase.page} for {item.price} "
        f"(balance {user.credits})"
    )
    return schemas.PurchaseResponse(
        message="Purchase successful",
        content=content,
        page=page + 1 if item.type == ItemType.SEQUENTIAL else None,
        credits=user.credits,
    )

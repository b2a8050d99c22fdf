import logging

from app.core.config import Settings
from app.core.storage import Storage
from app.modules.auth import service as auth_service
from app.modules.items.models import ItemType
from app.modules.items.schemas import ItemCreate

logger = logging.getLogger(__name__)

DEMO_ITEMS = [
    ItemCreate(
        title="Neon Sword",
        description="A glowing plasma blade.",
        price=500,
        type=ItemType.FULL,
        content="You have unlocked the Neon Sword asset pack!",
    ),
    ItemCreate(
        title="Hacker Manifesto",
        description="The 3-part guide to the grid.",
        price=1000,
        type=ItemType.SEQUENTIAL,
        contents=[
            "Chapter 1: The Signal",
            "Chapter 2: The Noise",
            "Chapter 3: The Silence",
        ],
    ),
]

async def seed_items(storage: Storage) -> int:
    """Create the demo catalogue on an empty store. Returns the number of items created."""
    if await storage.list_items():
        return 0
    for item_in in DEMO_ITEMS:
        await storage.create_item(item_in)
    logger.info(f"Seeded {len(DEMO_ITEMS)} demo items")
    return len(DEMO_ITEMS)

async def seed_database(storage: Storage, settings: Settings) -> None:
    if settings.ADMIN_USERNAME and settings.ADMIN_PASSWORD:
        await auth_service.ensure_admin(storage, settings.ADMIN_USERNAME, settings.ADMIN_PASSWORD)
    if settings.SEED_DEMO_DATA:
        await seed_items(storage)

import logging
from typing import List
from app.core.storage import Storage
from app.modules.auth.schemas import UserInDB
from app.modules.transactions import schemas
from app.modules.transactions.models import TransactionStatus

logger = logging.getLogger(__name__)

async def list_transactions(storage: Storage) -> List[schemas.TransactionRead]:
    return await storage.list_transactions()

async def create_transaction(
    storage: Storage, user: UserInDB, tx_in: schemas.TransactionCreate
) -> schemas.TransactionRead:
    tx = await storage.create_transaction(user.id, tx_in)
    logger.info(f"User {user.id} requested top-up {tx.id} of {tx.amount} (ref {tx.transaction_id})")
    return tx

async def update_amount(storage: Storage, tx_id: str, amount: int, admin: UserInDB) -> schemas.TransactionRead:
    # Overwrites the amount in any status; an approved top-up is not re-credited
    tx = await storage.update_transaction_amount(tx_id, amount)
    logger.info(f"Admin {admin.id} set amount of transaction {tx.id} to {amount} ({tx.status.value})")
    return tx

async def approve(storage: Storage, tx_id: str, admin: UserInDB) -> schemas.TransactionRead:
    tx, owner = await storage.approve_transaction(tx_id)
    if owner is None:
        logger.warning(f"Transaction {tx.id} approved but user {tx.user_id} no longer exists; no credits granted")
    else:
        logger.info(f"Admin {admin.id} approved transaction {tx.id}: +{tx.amount} to user {owner.id} (balance {owner.credits})")
    return tx

async def reject(storage: Storage, tx_id: str, admin: UserInDB) -> schemas.TransactionRead:
    tx = await storage.update_transaction_status(tx_id, TransactionStatus.REJECTED)
    logger.info(f"Admin {admin.id} rejected transaction {tx.id}")
    return tx

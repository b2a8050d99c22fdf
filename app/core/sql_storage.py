"""
SQLAlchemy (asyncio) backend for the entity store.

Compound mutations run inside one database transaction and guard their
state changes with conditional UPDATEs (``... WHERE status = 'pending'``,
``... WHERE credits >= :price``, ``... WHERE is_used = false``), so two
concurrent requests can never both win.
"""
import logging
from typing import List, Optional, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError

from app.core.db import Base, load_models, make_engine, make_session_factory
from app.core.errors import Conflict, InsufficientCredits, NotFound, ValidationFailed
from app.core.storage import Storage, generate_code_token, utcnow
from app.modules.auth import models as auth_models
from app.modules.auth.models import UserRole
from app.modules.auth.schemas import UserInDB
from app.modules.codes import models as code_models
from app.modules.codes.schemas import RedeemCodeRead
from app.modules.items import models as item_models
from app.modules.items.schemas import ItemCreate, ItemRead, PurchaseRead
from app.modules.tickets import models as ticket_models
from app.modules.tickets.models import TicketStatus
from app.modules.tickets.schemas import TicketCreate, TicketRead
from app.modules.transactions import models as tx_models
from app.modules.transactions.models import TransactionStatus
from app.modules.transactions.schemas import TransactionCreate, TransactionRead

logger = logging.getLogger(__name__)

User = auth_models.User
AdminBootstrap = auth_models.AdminBootstrap
Item = item_models.Item
Purchase = item_models.Purchase
ItemProgress = item_models.ItemProgress
Transaction = tx_models.Transaction
Ticket = ticket_models.Ticket
RedeemCode = code_models.RedeemCode


class SqlStorage(Storage):
    def __init__(self, url: str, echo: bool = False, code_bytes: int = 8):
        self.code_bytes = code_bytes
        self.engine = make_engine(url, echo=echo)
        self.SessionLocal = make_session_factory(self.engine)

    async def init(self) -> None:
        # Alembic owns production migrations; create_all covers fresh databases
        load_models()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # Users
    async def get_user(self, user_id: str) -> Optional[UserInDB]:
        async with self.SessionLocal() as db:
            user = await db.get(User, str(user_id))
            return UserInDB.model_validate(user) if user else None

    async def get_user_by_username(self, username: str) -> Optional[UserInDB]:
        async with self.SessionLocal() as db:
            result = await db.execute(select(User).where(User.username == username))
            user = result.scalars().first()
            return UserInDB.model_validate(user) if user else None

    async def create_user(self, username: str, hashed_password: str, role: UserRole = UserRole.USER) -> UserInDB:
        user = User(
            username=username,
            hashed_password=hashed_password,
            role=role,
            credits=0,
            created_at=utcnow(),
        )
        async with self.SessionLocal() as db:
            db.add(user)
            try:
                await db.commit()
            except IntegrityError:
                await db.rollback()
                raise ValidationFailed("Username already exists")
            return UserInDB.model_validate(user)

    async def register_user(self, username: str, hashed_password: str) -> UserInDB:
        user = User(
            username=username,
            hashed_password=hashed_password,
            role=UserRole.USER,
            credits=0,
            created_at=utcnow(),
        )
        async with self.SessionLocal() as db:
            async with db.begin():
                first = (await db.scalar(select(func.count(User.id))) or 0) == 0
                db.add(user)
                try:
                    await db.flush()
                except IntegrityError:
                    raise ValidationFailed("Username already exists")

                if first:
                    # The bootstrap row has a fixed key: one concurrent first registration wins it
                    try:
                        async with db.begin_nested():
                            db.add(AdminBootstrap(id=1, user_id=user.id, claimed_at=utcnow()))
                            await db.flush()
                    except IntegrityError:
                        logger.info(f"User {user.id} lost the first-admin claim; registered as user")
                    else:
                        user.role = UserRole.ADMIN
            return UserInDB.model_validate(user)

    async def update_user_credits(self, user_id: str, credits: int) -> UserInDB:
        if credits < 0:
            raise ValidationFailed("Credits cannot be negative")
        async with self.SessionLocal() as db:
            async with db.begin():
                result = await db.execute(
                    update(User)
                    .where(User.id == str(user_id))
                    .values(credits=credits)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 0:
                    raise NotFound("User not found")
                user = await db.get(User, str(user_id), populate_existing=True)
            return UserInDB.model_validate(user)

    async def get_user_count(self) -> int:
        async with self.SessionLocal() as db:
            return await db.scalar(select(func.count(User.id))) or 0

    async def list_users(self) -> List[UserInDB]:
        async with self.SessionLocal() as db:
            result = await db.execute(select(User).order_by(User.created_at))
            return [UserInDB.model_validate(u) for u in result.scalars().all()]

    # Items
    async def list_items(self) -> List[ItemRead]:
        async with self.SessionLocal() as db:
            result = await db.execute(select(Item).order_by(Item.created_at))
            return [ItemRead.model_validate(i) for i in result.scalars().all()]

    async def get_item(self, item_id: str) -> Optional[ItemRead]:
        async with self.SessionLocal() as db:
            item = await db.get(Item, str(item_id))
            return ItemRead.model_validate(item) if item else None

    async def create_item(self, item_in: ItemCreate) -> ItemRead:
        item = Item(created_at=utcnow(), **item_in.model_dump())
        async with self.SessionLocal() as db:
            db.add(item)
            await db.commit()
            return ItemRead.model_validate(item)

    async def delete_item(self, item_id: str) -> None:
        async with self.SessionLocal() as db:
            item = await db.get(Item, str(item_id))
            if item:
                await db.delete(item)
                await db.commit()

    # Transactions
    async def list_transactions(self) -> List[TransactionRead]:
        async with self.SessionLocal() as db:
            result = await db.execute(select(Transaction).order_by(Transaction.created_at))
            return [TransactionRead.model_validate(t) for t in result.scalars().all()]

    async def get_transaction(self, tx_id: str) -> Optional[TransactionRead]:
        async with self.SessionLocal() as db:
            tx = await db.get(Transaction, str(tx_id))
            return TransactionRead.model_validate(tx) if tx else None

    async def create_transaction(self, user_id: str, tx_in: TransactionCreate) -> TransactionRead:
        tx = Transaction(
            user_id=str(user_id),
            transaction_id=tx_in.transaction_id,
            amount=tx_in.amount,
            status=TransactionStatus.PENDING,
            created_at=utcnow(),
        )
        async with self.SessionLocal() as db:
            db.add(tx)
            await db.commit()
            return TransactionRead.model_validate(tx)

    async def _claim_pending(self, db, tx_id: str, status: TransactionStatus):
        result = await db.execute(
            update(Transaction)
            .where(Transaction.id == tx_id, Transaction.status == TransactionStatus.PENDING)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        tx = await db.get(Transaction, tx_id, populate_existing=True)
        if not tx:
            raise NotFound("Transaction not found")
        if result.rowcount == 0:
            raise Conflict(f"Transaction already {tx.status.value}")
        return tx

    async def update_transaction_status(self, tx_id: str, status: TransactionStatus) -> TransactionRead:
        if status == TransactionStatus.PENDING:
            raise ValidationFailed("Transactions cannot be moved back to pending")
        async with self.SessionLocal() as db:
            async with db.begin():
                tx = await self._claim_pending(db, str(tx_id), status)
            return TransactionRead.model_validate(tx)

    async def update_transaction_amount(self, tx_id: str, amount: int) -> TransactionRead:
        async with self.SessionLocal() as db:
            async with db.begin():
                tx = await db.get(Transaction, str(tx_id))
                if not tx:
                    raise NotFound("Transaction not found")
                tx.amount = amount
            return TransactionRead.model_validate(tx)

    async def approve_transaction(self, tx_id: str) -> Tuple[TransactionRead, Optional[UserInDB]]:
        async with self.SessionLocal() as db:
            async with db.begin():
                tx = await self._claim_pending(db, str(tx_id), TransactionStatus.APPROVED)
                result = await db.execute(
                    update(User)
                    .where(User.id == tx.user_id)
                    .values(credits=User.credits + tx.amount)
                    .execution_options(synchronize_session=False)
                )
                user = None
                if result.rowcount:
                    user = await db.get(User, tx.user_id, populate_existing=True)
            return (
                TransactionRead.model_validate(tx),
                UserInDB.model_validate(user) if user else None,
            )

    # Tickets
    async def list_tickets(self, user_id: Optional[str] = None) -> List[TicketRead]:
        stmt = select(Ticket).order_by(Ticket.created_at)
        if user_id is not None:
            stmt = stmt.where(Ticket.user_id == str(user_id))
        async with self.SessionLocal() as db:
            result = await db.execute(stmt)
            return [TicketRead.model_validate(t) for t in result.scalars().all()]

    async def get_ticket(self, ticket_id: str) -> Optional[TicketRead]:
        async with self.SessionLocal() as db:
            ticket = await db.get(Ticket, str(ticket_id))
            return TicketRead.model_validate(ticket) if ticket else None

    async def create_ticket(self, user_id: str, ticket_in: TicketCreate) -> TicketRead:
        ticket = Ticket(
            user_id=str(user_id),
            subject=ticket_in.subject,
            message=ticket_in.message,
            status=TicketStatus.OPEN,
            created_at=utcnow(),
        )
        async with self.SessionLocal() as db:
            db.add(ticket)
            await db.commit()
            return TicketRead.model_validate(ticket)

    async def update_ticket_reply(self, ticket_id: str, reply: str) -> TicketRead:
        ticket_id = str(ticket_id)
        async with self.SessionLocal() as db:
            async with db.begin():
                result = await db.execute(
                    update(Ticket)
                    .where(Ticket.id == ticket_id, Ticket.status == TicketStatus.OPEN)
                    .values(reply=reply, status=TicketStatus.CLOSED)
                    .execution_options(synchronize_session=False)
                )
                ticket = await db.get(Ticket, ticket_id, populate_existing=True)
                if not ticket:
                    raise NotFound("Ticket not found")
                if result.rowcount == 0:
                    raise Conflict("Ticket already closed")
            return TicketRead.model_validate(ticket)

    # Purchases
    async def record_purchase(
        self, user_id: str, item_id: str, price: int, content: str, page: int = 0
    ) -> Tuple[PurchaseRead, UserInDB]:
        user_id, item_id = str(user_id), str(item_id)
        async with self.SessionLocal() as db:
            try:
                async with db.begin():
                    progress = await db.get(ItemProgress, (user_id, item_id))
                    if (progress.delivered if progress else 0) != page:
                        raise Conflict("Purchase state changed, retry")

                    result = await db.execute(
                        update(User)
                        .where(User.id == user_id, User.credits >= price)
                        .values(credits=User.credits - price)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount == 0:
                        if await db.get(User, user_id) is None:
                            raise NotFound("User not found")
                        raise InsufficientCredits()

                    if progress:
                        advanced = await db.execute(
                            update(ItemProgress)
                            .where(
                                ItemProgress.user_id == user_id,
                                ItemProgress.item_id == item_id,
                                ItemProgress.delivered == page,
                            )
                            .values(delivered=page + 1)
                            .execution_options(synchronize_session=False)
                        )
                        if advanced.rowcount == 0:
                            raise Conflict("Purchase state changed, retry")
                    else:
                        db.add(ItemProgress(user_id=user_id, item_id=item_id, delivered=1))

                    purchase = Purchase(
                        user_id=user_id,
                        item_id=item_id,
                        page=page,
                        price=price,
                        content_delivered=content,
                        purchased_at=utcnow(),
                    )
                    db.add(purchase)
                    await db.flush()
                    user = await db.get(User, user_id, populate_existing=True)
            except IntegrityError:
                # Lost the race on (user, item, page) or on the progress row
                raise Conflict("Purchase state changed, retry")
            return PurchaseRead.model_validate(purchase), UserInDB.model_validate(user)

    async def has_purchased(self, user_id: str, item_id: str) -> bool:
        async with self.SessionLocal() as db:
            found = await db.scalar(
                select(Purchase.id)
                .where(Purchase.user_id == str(user_id), Purchase.item_id == str(item_id))
                .limit(1)
            )
            return found is not None

    async def get_purchase_progress(self, user_id: str, item_id: str) -> int:
        async with self.SessionLocal() as db:
            progress = await db.get(ItemProgress, (str(user_id), str(item_id)))
            return progress.delivered if progress else 0

    # Redeem codes
    async def _find_code(self, db, code: str):
        result = await db.execute(select(RedeemCode).where(RedeemCode.code == code))
        return result.scalars().first()

    async def _claim_code(self, db, code_id: str, user_id: str) -> bool:
        result = await db.execute(
            update(RedeemCode)
            .where(RedeemCode.id == str(code_id), RedeemCode.is_used.is_(False))
            .values(is_used=True, used_by=str(user_id))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def get_redeem_code(self, code: str) -> Optional[RedeemCodeRead]:
        async with self.SessionLocal() as db:
            rc = await self._find_code(db, code)
            return RedeemCodeRead.model_validate(rc) if rc else None

    async def mark_redeem_code_used(self, code_id: str, user_id: str) -> bool:
        async with self.SessionLocal() as db:
            async with db.begin():
                return await self._claim_code(db, code_id, user_id)

    async def generate_redeem_codes(self, value: int, count: int) -> List[RedeemCodeRead]:
        async with self.SessionLocal() as db:
            async with db.begin():
                codes = []
                while len(codes) < count:
                    token = generate_code_token(self.code_bytes)
                    if any(c.code == token for c in codes):
                        continue
                    if await db.scalar(select(RedeemCode.id).where(RedeemCode.code == token)):
                        continue
                    codes.append(RedeemCode(code=token, value=value, is_used=False, created_at=utcnow()))
                db.add_all(codes)
            return [RedeemCodeRead.model_validate(c) for c in codes]

    async def list_redeem_codes(self) -> List[RedeemCodeRead]:
        async with self.SessionLocal() as db:
            result = await db.execute(select(RedeemCode).order_by(RedeemCode.created_at))
            return [RedeemCodeRead.model_validate(rc) for rc in result.scalars().all()]

    async def redeem_code(self, code: str, user_id: str) -> Tuple[RedeemCodeRead, UserInDB]:
        user_id = str(user_id)
        async with self.SessionLocal() as db:
            async with db.begin():
                rc = await self._find_code(db, code)
                if not rc:
                    raise ValidationFailed("Invalid or used code")
                if await db.get(User, user_id) is None:
                    raise NotFound("User not found")

                if not await self._claim_code(db, rc.id, user_id):
                    raise ValidationFailed("Invalid or used code")

                await db.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(credits=User.credits + rc.value)
                    .execution_options(synchronize_session=False)
                )
                rc = await db.get(RedeemCode, rc.id, populate_existing=True)
                user = await db.get(User, user_id, populate_existing=True)
            return RedeemCodeRead.model_validate(rc), UserInDB.model_validate(user)

"""
Entity store for users, items, transactions, tickets, purchases and redeem codes.

``Storage`` is the contract every backend implements. Two backends exist:

* ``InMemoryStorage`` keeps everything in process-local dicts. Ids come from a
  single monotonically increasing counter and are handed out as strings.
* ``SqlStorage`` (``app.core.sql_storage``) persists through SQLAlchemy.

Mutations that touch a user's balance together with another record
(``record_purchase``, ``approve_transaction``, ``redeem_code``) are single
atomic operations on the store; callers never read-modify-write ``credits``
themselves.

The backend is picked once at startup by ``build_storage`` and handed to the
request handlers through ``app.state``.
"""
import abc
import asyncio
import logging
import secrets
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from app.core.config import Settings
from app.core.errors import Conflict, InsufficientCredits, NotFound, ValidationFailed
from app.modules.auth.models import UserRole
from app.modules.auth.schemas import UserInDB
from app.modules.codes.schemas import RedeemCodeRead
from app.modules.items.schemas import ItemCreate, ItemRead, PurchaseRead
from app.modules.tickets.models import TicketStatus
from app.modules.tickets.schemas import TicketCreate, TicketRead
from app.modules.transactions.models import TransactionStatus
from app.modules.transactions.schemas import TransactionCreate, TransactionRead

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_code_token(num_bytes: int = 8) -> str:
    """Random upper-case hex token from the OS CSPRNG (2 chars per byte)."""
    return secrets.token_hex(num_bytes).upper()


class Storage(abc.ABC):
    """Persistence contract shared by every backend."""

    code_bytes: int = 8

    async def init(self) -> None:
        """Prepare the backend (create schema, open pools)."""

    async def close(self) -> None:
        """Release backend resources."""

    # Users
    @abc.abstractmethod
    async def get_user(self, user_id: str) -> Optional[UserInDB]: ...

    @abc.abstractmethod
    async def get_user_by_username(self, username: str) -> Optional[UserInDB]: ...

    @abc.abstractmethod
    async def create_user(self, username: str, hashed_password: str, role: UserRole = UserRole.USER) -> UserInDB:
        """Raises ValidationFailed when the username is taken."""

    @abc.abstractmethod
    async def register_user(self, username: str, hashed_password: str) -> UserInDB:
        """
        Create an account whose role is decided in the same atomic step: ADMIN
        for the first account on an empty store, USER for every later one.
        Raises ValidationFailed when the username is taken.
        """

    @abc.abstractmethod
    async def update_user_credits(self, user_id: str, credits: int) -> UserInDB:
        """Overwrite the balance. Raises NotFound, or ValidationFailed for a negative balance."""

    @abc.abstractmethod
    async def get_user_count(self) -> int: ...

    @abc.abstractmethod
    async def list_users(self) -> List[UserInDB]: ...

    # Items
    @abc.abstractmethod
    async def list_items(self) -> List[ItemRead]: ...

    @abc.abstractmethod
    async def get_item(self, item_id: str) -> Optional[ItemRead]: ...

    @abc.abstractmethod
    async def create_item(self, item_in: ItemCreate) -> ItemRead: ...

    @abc.abstractmethod
    async def delete_item(self, item_id: str) -> None:
        """Remove the item. Deleting an unknown id is a no-op; purchases are kept."""

    # Transactions
    @abc.abstractmethod
    async def list_transactions(self) -> List[TransactionRead]: ...

    @abc.abstractmethod
    async def get_transaction(self, tx_id: str) -> Optional[TransactionRead]: ...

    @abc.abstractmethod
    async def create_transaction(self, user_id: str, tx_in: TransactionCreate) -> TransactionRead: ...

    @abc.abstractmethod
    async def update_transaction_status(self, tx_id: str, status: TransactionStatus) -> TransactionRead:
        """Move a PENDING transaction to ``status``. Raises NotFound or Conflict."""

    @abc.abstractmethod
    async def update_transaction_amount(self, tx_id: str, amount: int) -> TransactionRead: ...

    @abc.abstractmethod
    async def approve_transaction(self, tx_id: str) -> Tuple[TransactionRead, Optional[UserInDB]]:
        """
        Atomically approve a PENDING transaction and credit its owner.
        Returns the owner after crediting, or None when the owner no longer exists.
        """

    # Tickets
    @abc.abstractmethod
    async def list_tickets(self, user_id: Optional[str] = None) -> List[TicketRead]: ...

    @abc.abstractmethod
    async def get_ticket(self, ticket_id: str) -> Optional[TicketRead]: ...

    @abc.abstractmethod
    async def create_ticket(self, user_id: str, ticket_in: TicketCreate) -> TicketRead: ...

    @abc.abstractmethod
    async def update_ticket_reply(self, ticket_id: str, reply: str) -> TicketRead:
        """Set the reply and close an OPEN ticket. Raises NotFound or Conflict."""

    # Purchases
    @abc.abstractmethod
    async def record_purchase(
        self, user_id: str, item_id: str, price: int, content: str, page: int = 0
    ) -> Tuple[PurchaseRead, UserInDB]:
        """
        Debit ``price`` and append the purchase of ``page`` in one step.

        ``page`` must equal the current progress for (user, item), otherwise
        another purchase got there first and Conflict is raised. Raises NotFound
        for an unknown user and InsufficientCredits when the balance is short.
        """

    @abc.abstractmethod
    async def has_purchased(self, user_id: str, item_id: str) -> bool: ...

    @abc.abstractmethod
    async def get_purchase_progress(self, user_id: str, item_id: str) -> int:
        """Number of pages of ``item_id`` delivered to ``user_id`` so far."""

    # Redeem codes
    @abc.abstractmethod
    async def get_redeem_code(self, code: str) -> Optional[RedeemCodeRead]: ...

    @abc.abstractmethod
    async def mark_redeem_code_used(self, code_id: str, user_id: str) -> bool:
        """Compare-and-set ``is_used``. False when the code was already used or is unknown."""

    @abc.abstractmethod
    async def generate_redeem_codes(self, value: int, count: int) -> List[RedeemCodeRead]: ...

    @abc.abstractmethod
    async def list_redeem_codes(self) -> List[RedeemCodeRead]: ...

    @abc.abstractmethod
    async def redeem_code(self, code: str, user_id: str) -> Tuple[RedeemCodeRead, UserInDB]:
        """
        Mark the code used by ``user_id`` and credit its value, atomically.
        Raises ValidationFailed for an unknown or used code, NotFound for an unknown user.
        """


class InMemoryStorage(Storage):
    """Ephemeral store. Every record handed out is a copy."""

    def __init__(self, code_bytes: int = 8):
        self.code_bytes = code_bytes
        self.users: Dict[str, UserInDB] = {}
        self.items: Dict[str, ItemRead] = {}
        self.transactions: Dict[str, TransactionRead] = {}
        self.tickets: Dict[str, TicketRead] = {}
        self.purchases: List[PurchaseRead] = []
        self.progress: Dict[Tuple[str, str], int] = {}
        self.redeem_codes: Dict[str, RedeemCodeRead] = {}
        self._next_id = 1

        # Balance changes are serialized per user, record status changes per store
        self._user_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._lock = asyncio.Lock()

    def _generate_id(self) -> str:
        new_id = str(self._next_id)
        self._next_id += 1
        return new_id

    def _require_user(self, user_id: str) -> UserInDB:
        user = self.users.get(str(user_id))
        if not user:
            raise NotFound("User not found")
        return user

    # Users
    async def get_user(self, user_id: str) -> Optional[UserInDB]:
        user = self.users.get(str(user_id))
        return user.model_copy() if user else None

    async def get_user_by_username(self, username: str) -> Optional[UserInDB]:
        for user in self.users.values():
            if user.username == username:
                return user.model_copy()
        return None

    def _add_user(self, username: str, hashed_password: str, role: UserRole) -> UserInDB:
        # Caller holds self._lock
        if any(u.username == username for u in self.users.values()):
            raise ValidationFailed("Username already exists")
        user = UserInDB(
            id=self._generate_id(),
            username=username,
            hashed_password=hashed_password,
            role=role,
            credits=0,
            created_at=utcnow(),
        )
        self.users[user.id] = user
        return user.model_copy()

    async def create_user(self, username: str, hashed_password: str, role: UserRole = UserRole.USER) -> UserInDB:
        async with self._lock:
            return self._add_user(username, hashed_password, role)

    async def register_user(self, username: str, hashed_password: str) -> UserInDB:
        async with self._lock:
            role = UserRole.USER if self.users else UserRole.ADMIN
            return self._add_user(username, hashed_password, role)

    async def update_user_credits(self, user_id: str, credits: int) -> UserInDB:
        if credits < 0:
            raise ValidationFailed("Credits cannot be negative")
        async with self._user_locks[str(user_id)]:
            user = self._require_user(user_id)
            user.credits = credits
        return user.model_copy()

    async def get_user_count(self) -> int:
        return len(self.users)

    async def list_users(self) -> List[UserInDB]:
        return [u.model_copy() for u in self.users.values()]

    # Items
    async def list_items(self) -> List[ItemRead]:
        return [i.model_copy(deep=True) for i in self.items.values()]

    async def get_item(self, item_id: str) -> Optional[ItemRead]:
        item = self.items.get(str(item_id))
        return item.model_copy(deep=True) if item else None

    async def create_item(self, item_in: ItemCreate) -> ItemRead:
        item = ItemRead(id=self._generate_id(), created_at=utcnow(), **item_in.model_dump())
        self.items[item.id] = item
        return item.model_copy(deep=True)

    async def delete_item(self, item_id: str) -> None:
        self.items.pop(str(item_id), None)

    # Transactions
    async def list_transactions(self) -> List[TransactionRead]:
        return [t.model_copy() for t in self.transactions.values()]

    async def get_transaction(self, tx_id: str) -> Optional[TransactionRead]:
        tx = self.transactions.get(str(tx_id))
        return tx.model_copy() if tx else None

    async def create_transaction(self, user_id: str, tx_in: TransactionCreate) -> TransactionRead:
        tx = TransactionRead(
            id=self._generate_id(),
            user_id=str(user_id),
            transaction_id=tx_in.transaction_id,
            amount=tx_in.amount,
            status=TransactionStatus.PENDING,
            created_at=utcnow(),
        )
        self.transactions[tx.id] = tx
        return tx.model_copy()

    def _claim_pending(self, tx_id: str, status: TransactionStatus) -> TransactionRead:
        tx = self.transactions.get(str(tx_id))
        if not tx:
            raise NotFound("Transaction not found")
        if tx.status != TransactionStatus.PENDING:
            raise Conflict(f"Transaction already {tx.status.value}")
        tx.status = status
        return tx

    async def update_transaction_status(self, tx_id: str, status: TransactionStatus) -> TransactionRead:
        if status == TransactionStatus.PENDING:
            raise ValidationFailed("Transactions cannot be moved back to pending")
        async with self._lock:
            tx = self._claim_pending(tx_id, status)
        return tx.model_copy()

    async def update_transaction_amount(self, tx_id: str, amount: int) -> TransactionRead:
        async with self._lock:
            tx = self.transactions.get(str(tx_id))
            if not tx:
                raise NotFound("Transaction not found")
            tx.amount = amount
        return tx.model_copy()

    async def approve_transaction(self, tx_id: str) -> Tuple[TransactionRead, Optional[UserInDB]]:
        async with self._lock:
            tx = self.transactions.get(str(tx_id))
            if not tx:
                raise NotFound("Transaction not found")
            async with self._user_locks[tx.user_id]:
                self._claim_pending(tx_id, TransactionStatus.APPROVED)
                user = self.users.get(tx.user_id)
                if user:
                    user.credits += tx.amount
        return tx.model_copy(), user.model_copy() if user else None

    # Tickets
    async def list_tickets(self, user_id: Optional[str] = None) -> List[TicketRead]:
        return [
            t.model_copy() for t in self.tickets.values()
            if user_id is None or t.user_id == str(user_id)
        ]

    async def get_ticket(self, ticket_id: str) -> Optional[TicketRead]:
        ticket = self.tickets.get(str(ticket_id))
        return ticket.model_copy() if ticket else None

    async def create_ticket(self, user_id: str, ticket_in: TicketCreate) -> TicketRead:
        ticket = TicketRead(
            id=self._generate_id(),
            user_id=str(user_id),
            subject=ticket_in.subject,
            message=ticket_in.message,
            status=TicketStatus.OPEN,
            created_at=utcnow(),
        )
        self.tickets[ticket.id] = ticket
        return ticket.model_copy()

    async def update_ticket_reply(self, ticket_id: str, reply: str) -> TicketRead:
        async with self._lock:
            ticket = self.tickets.get(str(ticket_id))
            if not ticket:
                raise NotFound("Ticket not found")
            if ticket.status != TicketStatus.OPEN:
                raise Conflict("Ticket already closed")
            ticket.reply = reply
            ticket.status = TicketStatus.CLOSED
        return ticket.model_copy()

    # Purchases
    async def record_purchase(
        self, user_id: str, item_id: str, price: int, content: str, page: int = 0
    ) -> Tuple[PurchaseRead, UserInDB]:
        user_id, item_id = str(user_id), str(item_id)
        async with self._user_locks[user_id]:
            user = self._require_user(user_id)
            key = (user_id, item_id)
            if self.progress.get(key, 0) != page:
                raise Conflict("Purchase state changed, retry")
            if user.credits < price:
                raise InsufficientCredits()

            user.credits -= price
            purchase = PurchaseRead(
                id=self._generate_id(),
                user_id=user_id,
                item_id=item_id,
                page=page,
                price=price,
                content_delivered=content,
                purchased_at=utcnow(),
            )
            self.purchases.append(purchase)
            self.progress[key] = page + 1
        return purchase.model_copy(), user.model_copy()

    async def has_purchased(self, user_id: str, item_id: str) -> bool:
        return any(p.user_id == str(user_id) and p.item_id == str(item_id) for p in self.purchases)

    async def get_purchase_progress(self, user_id: str, item_id: str) -> int:
        return self.progress.get((str(user_id), str(item_id)), 0)

    # Redeem codes
    def _find_code(self, code: str) -> Optional[RedeemCodeRead]:
        return next((rc for rc in self.redeem_codes.values() if rc.code == code), None)

    def _claim_code(self, code_id: str, user_id: str) -> bool:
        # Caller holds self._lock
        rc = self.redeem_codes.get(str(code_id))
        if not rc or rc.is_used:
            return False
        rc.is_used = True
        rc.used_by = str(user_id)
        return True

    async def get_redeem_code(self, code: str) -> Optional[RedeemCodeRead]:
        rc = self._find_code(code)
        return rc.model_copy() if rc else None

    async def mark_redeem_code_used(self, code_id: str, user_id: str) -> bool:
        async with self._lock:
            return self._claim_code(code_id, user_id)

    async def generate_redeem_codes(self, value: int, count: int) -> List[RedeemCodeRead]:
        codes = []
        async with self._lock:
            taken = {rc.code for rc in self.redeem_codes.values()}
            while len(codes) < count:
                token = generate_code_token(self.code_bytes)
                if token in taken:
                    continue
                taken.add(token)
                rc = RedeemCodeRead(id=self._generate_id(), code=token, value=value, created_at=utcnow())
                self.redeem_codes[rc.id] = rc
                codes.append(rc.model_copy())
        return codes

    async def list_redeem_codes(self) -> List[RedeemCodeRead]:
        return [rc.model_copy() for rc in self.redeem_codes.values()]

    async def redeem_code(self, code: str, user_id: str) -> Tuple[RedeemCodeRead, UserInDB]:
        user_id = str(user_id)
        async with self._lock:
            rc = self._find_code(code)
            if not rc or rc.is_used:
                raise ValidationFailed("Invalid or used code")
            async with self._user_locks[user_id]:
                user = self._require_user(user_id)
                self._claim_code(rc.id, user_id)
                user.credits += rc.value
        return rc.model_copy(), user.model_copy()


async def build_storage(settings: Settings) -> Storage:
    """
    Pick the backend from ``settings.DATABASE_URL``.

    Without a URL, or when the database cannot be initialised, the in-memory
    store is used and a warning is logged: nothing written will survive a restart.
    """
    if not settings.DATABASE_URL:
        logger.warning("DATABASE_URL not set. Using in-memory storage; data will be lost on restart.")
        return InMemoryStorage(code_bytes=settings.REDEEM_CODE_BYTES)

    from app.core.sql_storage import SqlStorage

    storage = SqlStorage(settings.DATABASE_URL, echo=settings.SQL_ECHO, code_bytes=settings.REDEEM_CODE_BYTES)
    try:
        await storage.init()
    except Exception as e:
        logger.warning(f"Database initialisation failed ({e!r}). Using in-memory storage; data will be lost on restart.")
        await storage.close()
        return InMemoryStorage(code_bytes=settings.REDEEM_CODE_BYTES)

    logger.info("Connected to database storage")
    return storage

import asyncio
import logging

import pytest

from app.core.config import Settings
from app.core.errors import AlreadyPurchased, Conflict, Forbidden, InsufficientCredits, NotFound, ValidationFailed
from app.core.storage import InMemoryStorage, build_storage
from app.modules.auth import schemas as auth_schemas
from app.modules.auth import service as auth_service
from app.modules.auth.models import UserRole
from app.modules.codes import service as code_service
from app.modules.codes.schemas import CodeGenerate, CodeRedeem
from app.modules.items import service as item_service
from app.modules.tickets import service as ticket_service
from app.modules.tickets.models import TicketStatus
from app.modules.tickets.schemas import TicketCreate, TicketReply
from app.modules.transactions import service as tx_service
from app.modules.transactions.models import TransactionStatus
from app.modules.transactions.schemas import TransactionCreate
from app.seed import seed_database
from conftest import full_item, make_user, sequential_item


@pytest.fixture
async def admin(memory_storage):
    return await make_user(memory_storage, "root", role=UserRole.ADMIN)


# Purchases

async def test_purchase_full_item_debits_exact_price(memory_storage):
    alice = await make_user(memory_storage, "alice", credits=800)
    item = await memory_storage.create_item(full_item(price=500, content="asset pack"))

    result = await item_service.purchase_item(memory_storage, alice.id, item.id)

    assert result.content == "asset pack"
    assert result.credits == 300
    assert result.page is None
    assert (await memory_storage.get_user(alice.id)).credits == 300
    assert await memory_storage.has_purchased(alice.id, item.id)


async def test_purchase_full_item_twice_is_rejected(memory_storage):
    alice = await make_user(memory_storage, "alice", credits=1000)
    item = await memory_storage.create_item(full_item(price=500))

    await item_service.purchase_item(memory_storage, alice.id, item.id)
    with pytest.raises(AlreadyPurchased):
        await item_service.purchase_item(memory_storage, alice.id, item.id)
    assert (await memory_storage.get_user(alice.id)).credits == 500


async def test_purchase_without_enough_credits(memory_storage):
    alice = await make_user(memory_storage, "alice", credits=499)
    item = await memory_storage.create_item(full_item(price=500))

    with pytest.raises(InsufficientCredits) as exc_info:
        await item_service.purchase_item(memory_storage, alice.id, item.id)

    assert isinstance(exc_info.value, ValidationFailed)
    assert (await memory_storage.get_user(alice.id)).credits == 499
    assert not await memory_storage.has_purchased(alice.id, item.id)


async def test_purchase_unknown_item_or_user(memory_storage):
    alice = await make_user(memory_storage, "alice")
    item = await memory_storage.create_item(full_item(price=0))

    with pytest.raises(NotFound):
        await item_service.purchase_item(memory_storage, alice.id, "missing")
    with pytest.raises(NotFound):
        await item_service.purchase_item(memory_storage, "missing", item.id)


async def test_sequential_item_delivers_next_unseen_page(memory_storage):
    alice = await make_user(memory_storage, "alice", credits=1000)
    bob = await make_user(memory_storage, "bob", credits=1000)
    item = await memory_storage.create_item(sequential_item(price=100, pages=("p1", "p2", "p3")))

    delivered = [await item_service.purchase_item(memory_storage, alice.id, item.id) for _ in range(3)]
    assert [d.content for d in delivered] == ["p1", "p2", "p3"]
    assert [d.page for d in delivered] == [1, 2, 3]
    assert delivered[-1].credits == 700

    with pytest.raises(ValidationFailed):
        await item_service.purchase_item(memory_storage, alice.id, item.id)
    assert (await memory_storage.get_user(alice.id)).credits == 700

    # Cursors are per user
    first_for_bob = await item_service.purchase_item(memory_storage, bob.id, item.id)
    assert first_for_bob.content == "p1"


async def test_concurrent_purchases_never_overdraw(memory_storage):
    alice = await make_user(memory_storage, "alice", credits=150)
    item = await memory_storage.create_item(sequential_item(price=100, pages=("p1", "p2", "p3")))

    results = await asyncio.gather(
        *[item_service.purchase_item(memory_storage, alice.id, item.id) for _ in range(3)],
        return_exceptions=True,
    )

    succeeded = [r for r in results if not isinstance(r, Exception)]
    assert len(succeeded) == 1
    assert all(isinstance(r, (InsufficientCredits, Conflict)) for r in results if isinstance(r, Exception))
    assert (await memory_storage.get_user(alice.id)).credits == 50


# Gated reads

async def test_free_item_is_visible_to_anyone(memory_storage):
    item = await memory_storage.create_item(full_item(price=0, content="freebie"))
    seen = await item_service.get_item_for_viewer(memory_storage, item.id, None)
    assert seen.content == "freebie"


async def test_paid_item_requires_purchase(memory_storage, admin):
    alice = await make_user(memory_storage, "alice", credits=500)
    item = await memory_storage.create_item(full_item(price=500))

    with pytest.raises(Forbidden):
        await item_service.get_item_for_viewer(memory_storage, item.id, None)
    with pytest.raises(Forbidden):
        await item_service.get_item_for_viewer(memory_storage, item.id, alice)

    await item_service.purchase_item(memory_storage, alice.id, item.id)
    seen = await item_service.get_item_for_viewer(memory_storage, item.id, alice)
    assert seen.content == "asset pack"

    as_admin = await item_service.get_item_for_viewer(memory_storage, item.id, admin)
    assert as_admin.content == "asset pack"

    with pytest.raises(NotFound):
        await item_service.get_item_for_viewer(memory_storage, "missing", alice)


async def test_sequential_buyer_sees_only_delivered_pages(memory_storage):
    alice = await make_user(memory_storage, "alice", credits=1000)
    item = await memory_storage.create_item(sequential_item(price=100, pages=("p1", "p2", "p3")))

    await item_service.purchase_item(memory_storage, alice.id, item.id)
    await item_service.purchase_item(memory_storage, alice.id, item.id)

    seen = await item_service.get_item_for_viewer(memory_storage, item.id, alice)
    assert seen.contents == ["p1", "p2"]


async def test_listing_hides_content(memory_storage):
    await memory_storage.create_item(full_item(price=500))
    await memory_storage.create_item(sequential_item(pages=("a", "b")))

    listed = await item_service.list_items(memory_storage)

    assert len(listed) == 2
    for summary in listed:
        assert not hasattr(summary, "content")
        assert not hasattr(summary, "contents")
    assert sorted(s.page_count or 0 for s in listed) == [0, 2]


# Transactions

async def test_approval_credits_owner_exactly_once(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    tx = await tx_service.create_transaction(memory_storage, alice, TransactionCreate(transaction_id="ref-1", amount=250))

    approved = await tx_service.approve(memory_storage, tx.id, admin)
    assert approved.status == TransactionStatus.APPROVED
    assert (await memory_storage.get_user(alice.id)).credits == 250

    with pytest.raises(Conflict):
        await tx_service.approve(memory_storage, tx.id, admin)
    with pytest.raises(Conflict):
        await tx_service.reject(memory_storage, tx.id, admin)
    assert (await memory_storage.get_user(alice.id)).credits == 250


async def test_rejection_leaves_balance(memory_storage, admin):
    alice = await make_user(memory_storage, "alice", credits=20)
    tx = await tx_service.create_transaction(memory_storage, alice, TransactionCreate(transaction_id="ref-1", amount=250))

    rejected = await tx_service.reject(memory_storage, tx.id, admin)

    assert rejected.status == TransactionStatus.REJECTED
    assert (await memory_storage.get_user(alice.id)).credits == 20


async def test_approval_for_missing_owner_is_a_noop_credit(memory_storage, admin, caplog):
    tx = await memory_storage.create_transaction("ghost", TransactionCreate(transaction_id="ref-1", amount=10))

    with caplog.at_level(logging.WARNING):
        approved = await tx_service.approve(memory_storage, tx.id, admin)

    assert approved.status == TransactionStatus.APPROVED
    assert "no longer exists" in caplog.text


async def test_approve_unknown_transaction(memory_storage, admin):
    with pytest.raises(NotFound):
        await tx_service.approve(memory_storage, "missing", admin)


async def test_amount_overwrite_after_approval_does_not_recredit(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    tx = await tx_service.create_transaction(memory_storage, alice, TransactionCreate(transaction_id="ref-1", amount=100))
    await tx_service.approve(memory_storage, tx.id, admin)

    updated = await tx_service.update_amount(memory_storage, tx.id, 900, admin)

    assert updated.amount == 900
    assert updated.status == TransactionStatus.APPROVED
    assert (await memory_storage.get_user(alice.id)).credits == 100


# Tickets

async def test_ticket_visibility_and_reply(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    bob = await make_user(memory_storage, "bob")
    ticket = await ticket_service.create_ticket(memory_storage, alice, TicketCreate(subject="Refund", message="Please"))
    await ticket_service.create_ticket(memory_storage, bob, TicketCreate(subject="Other", message="Hi"))

    assert [t.id for t in await ticket_service.list_tickets_for(memory_storage, alice)] == [ticket.id]
    assert len(await ticket_service.list_tickets_for(memory_storage, admin)) == 2

    closed = await ticket_service.reply(memory_storage, ticket.id, TicketReply(reply="Done"), admin)
    assert closed.status == TicketStatus.CLOSED

    [own] = await ticket_service.list_tickets_for(memory_storage, alice)
    assert own.reply == "Done"
    assert own.status == TicketStatus.CLOSED


# Redeem codes

async def test_five_codes_scenario(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    codes = await code_service.generate_codes(memory_storage, CodeGenerate(value=100, count=5), admin)
    assert len(codes) == 5

    result = await code_service.redeem(memory_storage, alice, CodeRedeem(code=codes[0].code))
    assert result.value == 100
    assert result.credits == 100

    unused = [c for c in await code_service.list_codes(memory_storage) if not c.is_used]
    assert len(unused) == 4

    for code in codes[1:]:
        await code_service.redeem(memory_storage, alice, CodeRedeem(code=code.code))
    assert (await memory_storage.get_user(alice.id)).credits == 500


async def test_code_redeemed_twice_fails(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    [code] = await code_service.generate_codes(memory_storage, CodeGenerate(value=100, count=1), admin)

    await code_service.redeem(memory_storage, alice, CodeRedeem(code=code.code))
    with pytest.raises(ValidationFailed, match="Invalid or used code"):
        await code_service.redeem(memory_storage, alice, CodeRedeem(code=code.code))
    assert (await memory_storage.get_user(alice.id)).credits == 100


async def test_code_input_is_normalized(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    [code] = await code_service.generate_codes(memory_storage, CodeGenerate(value=30, count=1), admin)

    result = await code_service.redeem(memory_storage, alice, CodeRedeem(code=f"  {code.code.lower()} "))
    assert result.value == 30


async def test_concurrent_redemptions_of_one_code(memory_storage, admin):
    alice = await make_user(memory_storage, "alice")
    bob = await make_user(memory_storage, "bob")
    [code] = await code_service.generate_codes(memory_storage, CodeGenerate(value=100, count=1), admin)

    results = await asyncio.gather(
        code_service.redeem(memory_storage, alice, CodeRedeem(code=code.code)),
        code_service.redeem(memory_storage, bob, CodeRedeem(code=code.code)),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, Exception)]
    assert len(failures) == 1
    assert isinstance(failures[0], ValidationFailed)
    balances = [(await memory_storage.get_user(u.id)).credits for u in (alice, bob)]
    assert sorted(balances) == [0, 100]


async def test_generate_too_many_codes(memory_storage, admin):
    with pytest.raises(ValidationFailed):
        await code_service.generate_codes(memory_storage, CodeGenerate(value=1, count=10_000), admin)
    assert await memory_storage.list_redeem_codes() == []


# Accounts and bootstrap

async def test_first_registered_user_is_admin(memory_storage):
    first = await auth_service.register_user(memory_storage, auth_schemas.UserCreate(username="first", password="pw"))
    second = await auth_service.register_user(memory_storage, auth_schemas.UserCreate(username="second", password="pw"))

    assert first.role == UserRole.ADMIN
    assert second.role == UserRole.USER
    assert second.hashed_password != "pw"

    with pytest.raises(ValidationFailed):
        await auth_service.register_user(memory_storage, auth_schemas.UserCreate(username="second", password="x"))


async def test_authenticate(memory_storage):
    await auth_service.register_user(memory_storage, auth_schemas.UserCreate(username="alice", password="pw"))

    user = await auth_service.authenticate(memory_storage, "alice", "pw")
    assert user.username == "alice"
    with pytest.raises(Exception) as exc_info:
        await auth_service.authenticate(memory_storage, "alice", "wrong")
    assert exc_info.value.status_code == 401


async def test_seed_database_is_idempotent(memory_storage):
    settings = Settings(SEED_DEMO_DATA=True, ADMIN_USERNAME="boss", ADMIN_PASSWORD="pw")

    await seed_database(memory_storage, settings)
    await seed_database(memory_storage, settings)

    titles = sorted(i.title for i in await memory_storage.list_items())
    assert titles == ["Hacker Manifesto", "Neon Sword"]
    boss = await memory_storage.get_user_by_username("boss")
    assert boss.role == UserRole.ADMIN
    assert await memory_storage.get_user_count() == 1


async def test_build_storage_without_url_falls_back_loudly(caplog):
    with caplog.at_level(logging.WARNING):
        storage = await build_storage(Settings(DATABASE_URL=None))

    assert isinstance(storage, InMemoryStorage)
    assert "in-memory storage" in caplog.text


async def test_build_storage_with_unreachable_database_falls_back(tmp_path, caplog):
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing-dir' / 'shop.db'}"
    with caplog.at_level(logging.WARNING):
        storage = await build_storage(Settings(DATABASE_URL=url))

    assert isinstance(storage, InMemoryStorage)
    assert "Database initialisation failed" in caplog.text

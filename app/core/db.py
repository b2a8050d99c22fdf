from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

Base = declarative_base()

def make_engine(url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(url, echo=echo, pool_pre_ping=True)

def make_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    # Records are converted to schemas after commit, so keep attributes loaded
    return async_sessionmaker(engine, expire_on_commit=False)

def load_models() -> None:
    """Import every table module so Base.metadata is complete."""
    from app.modules.auth import models as _auth  # noqa: F401
    from app.modules.items import models as _items  # noqa: F401
    from app.modules.transactions import models as _transactions  # noqa: F401
    from app.modules.tickets import models as _tickets  # noqa: F401
    from app.modules.codes import models as _codes  # noqa: F401

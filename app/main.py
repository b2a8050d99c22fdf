from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import settings
from app.core.errors import register_exception_handlers
from app.core.logging_config import setup_logging
from app.core.storage import Storage, build_storage
from app.seed import seed_database
from app.modules.auth.router import router as auth_router
from app.modules.items.router import router as items_router
from app.modules.transactions.router import router as transactions_router
from app.modules.tickets.router import router as tickets_router
from app.modules.codes.router import router as codes_router


def create_app(storage: Optional[Storage] = None) -> FastAPI:
    """
    Build the API. A given ``storage`` is used as-is (tests); otherwise the
    backend is chosen from settings when the app starts.
    """
    setup_logging(settings.LOG_LEVEL)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = storage is None
        if owned:
            app.state.storage = await build_storage(settings)
        await seed_database(app.state.storage, settings)
        yield
        if owned:
            await app.state.storage.close()

    app = FastAPI(
        title=settings.PROJECT_NAME,
        openapi_url=f"{settings.API_PREFIX}/openapi.json",
        lifespan=lifespan,
    )
    if storage is not None:
        app.state.storage = storage

    register_exception_handlers(app)

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.BACKEND_CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    def root():
        return {"message": f"Welcome to {settings.PROJECT_NAME}", "docs": "/docs"}

    app.include_router(auth_router, prefix=settings.API_PREFIX, tags=["auth"])
    app.include_router(items_router, prefix=f"{settings.API_PREFIX}/items", tags=["items"])
    app.include_router(transactions_router, prefix=f"{settings.API_PREFIX}/transactions", tags=["transactions"])
    app.include_router(tickets_router, prefix=f"{settings.API_PREFIX}/tickets", tags=["tickets"])
    app.include_router(codes_router, prefix=f"{settings.API_PREFIX}/codes", tags=["codes"])

    return app


app = create_app()

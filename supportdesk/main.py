from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from supportdesk.api.errors import install_error_handlers
from supportdesk.api.routes import approvals, billing, dashboard, organizations, ping, tickets, users
from supportdesk.core.config import Settings, get_settings
from supportdesk.core.logging import configure_logging, init_tracer, shutdown_tracer
from supportdesk.dependencies.auth import StaticTokenVerifier
from supportdesk.domain.billing import BillingService
from supportdesk.domain.clock import utcnow
from supportdesk.domain.directory import DirectoryService, initials
from supportdesk.domain.models import User
from supportdesk.domain.projections import ProjectionService
from supportdesk.domain.repository import SqlStoreRepository
from supportdesk.domain.store import AggregateStore, StoreChange
from supportdesk.domain.tickets import TicketService
from supportdesk.security.roles import Role

logger = logging.getLogger(__name__)


def _to_asyncpg_dsn(dsn: str) -> str:
    """Ensure the SQLAlchemy DSN uses the asyncpg driver."""

    if dsn.startswith("postgresql+asyncpg://"):
        return dsn
    if dsn.startswith("postgresql://"):
        return "postgresql+asyncpg://" + dsn[len("postgresql://") :]
    return dsn


def install_services(app: FastAPI, store: AggregateStore, settings: Settings) -> StaticTokenVerifier:
    """Attach the store, the domain services and the session verifier to ``app.state``."""

    verifier = StaticTokenVerifier(store, settings.api_tokens)
    app.state.store = store
    app.state.session_verifier = verifier
    app.state.ticket_service = TicketService(store)
    app.state.directory_service = DirectoryService(store)
    app.state.billing_service = BillingService(store, rate_per_hour=settings.rate_per_hour)
    app.state.projection_service = ProjectionService(store, activity_limit=settings.activity_feed_limit)
    return verifier


async def bootstrap_admin(store: AggregateStore, settings: Settings) -> User | None:
    """Create the first administrator when the store holds no users."""

    if store.snapshot().users:
        return None
    admin = User(
        id=str(uuid.uuid4()),
        name=settings.bootstrap_admin_name,
        email=settings.bootstrap_admin_email,
        role=Role.ADMIN,
        organization_id=None,
        avatar=initials(settings.bootstrap_admin_name),
        created_at=utcnow(),
    )
    async with store.catalog_lock:
        await store.commit(StoreChange(users=[admin]))
    logger.info("Bootstrapped administrator %s", admin.email)
    return admin


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    app_logger = configure_logging(settings)
    tracer_provider = init_tracer(settings)

    app.state.logger = app_logger
    app.state.tracer_provider = tracer_provider
    db_engine = None
    try:
        persistence = None
        if settings.postgres_dsn:
            db_engine = create_async_engine(_to_asyncpg_dsn(settings.postgres_dsn), future=True)
            session_factory = async_sessionmaker(db_engine, expire_on_commit=False)
            persistence = SqlStoreRepository(session_factory, engine=db_engine)
            await persistence.ensure_schema()
        store = AggregateStore(persistence)
        await store.load()
        verifier = install_services(app, store, settings)
        admin = await bootstrap_admin(store, settings)
        if admin is not None and settings.bootstrap_admin_token:
            verifier.add_token(settings.bootstrap_admin_token, admin.id)
    except Exception:  # pragma: no cover - service initialisation best effort
        app_logger.exception("Service initialisation failed; API will answer 503")
        app.state.store = None
        app.state.ticket_service = None
        app.state.directory_service = None
        app.state.billing_service = None
        app.state.projection_service = None
        if db_engine is not None:
            await db_engine.dispose()
            db_engine = None
    try:
        yield
    finally:
        if db_engine is not None:
            await db_engine.dispose()
        shutdown_tracer(tracer_provider)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    install_error_handlers(app)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(approvals.router)
    app.include_router(organizations.router)
    app.include_router(users.router)
    app.include_router(users.profile_router)
    app.include_router(billing.router)
    app.include_router(billing.settings_router)
    app.include_router(dashboard.router)
    return app


app = create_app()

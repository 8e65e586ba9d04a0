"""
Application context - owns the session store and its collaborators.

Built once per process, started on startup and closed on shutdown, then
injected into request handlers via request.app.state.context.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from config.settings import Settings, settings as default_settings, BACKEND_LOCAL, BACKEND_SUPABASE
from crud.subscription import SubscriptionRepository
from database import init_db, engine as default_engine, AsyncSessionLocal
from services.events import SubscriptionChangeFeed
from services.identity_provider import IdentityProvider, LocalIdentityProvider
from services.session_revalidator import SessionRevalidator
from services.session_store import SessionStore
from services.subscription_gate import SubscriptionGate
from services.subscription_status import SubscriptionStatusProjector
from services.supabase_client import SupabaseIdentityProvider, SupabaseSubscriptionRepository

logger = logging.getLogger(__name__)


class AppContext:
    def __init__(
        self,
        config: Settings,
        provider: IdentityProvider,
        engine: Optional[AsyncEngine] = None,
        session_factory: Optional[async_sessionmaker] = None,
        remote_subscriptions: Optional[SupabaseSubscriptionRepository] = None,
        changes: Optional[SubscriptionChangeFeed] = None,
    ):
        self.config = config
        self.provider = provider
        self.engine = engine
        self.session_factory = session_factory
        self.remote_subscriptions = remote_subscriptions
        self.changes = changes or SubscriptionChangeFeed()
        self.store = SessionStore(provider)
        self.projector = SubscriptionStatusProjector(
            self.subscription_repository,
            changes=self.changes,
            refresh_seconds=config.status_refresh_seconds,
        )
        self.revalidator = SessionRevalidator(
            self.store,
            self.subscription_repository,
            interval=config.session_revalidate_seconds,
        )

    @asynccontextmanager
    async def subscription_repository(self):
        """Yield a subscription repository scoped to one unit of work"""
        if self.remote_subscriptions is not None:
            yield self.remote_subscriptions
            return

        async with self.session_factory() as db:
            try:
                yield SubscriptionRepository(db, changes=self.changes)
                await db.commit()
            except Exception:
                await db.rollback()
                raise

    def gate(self, subscriptions) -> SubscriptionGate:
        return SubscriptionGate(
            self.store,
            subscriptions,
            trial_days=self.config.trial_days,
            fail_open=self.config.subscription_fail_open,
        )

    async def start(self) -> None:
        if self.engine is not None:
            await init_db(self.engine)
            logger.info("✅ Database initialized successfully")
        await self.store.start()
        self.revalidator.start()
        logger.info(f"Session store started ({self.config.auth_backend} backend)")

    async def close(self) -> None:
        await self.revalidator.stop()
        await self.store.close()
        await self.provider.close()
        if self.remote_subscriptions is not None:
            await self.remote_subscriptions.aclose()
        logger.info("Session store closed")


def build_app_context(
    config: Optional[Settings] = None,
    engine: Optional[AsyncEngine] = None,
    session_factory: Optional[async_sessionmaker] = None,
    http_client=None,
) -> AppContext:
    """
    Wire providers and repositories for the configured backend.

    Args:
        config: Settings; defaults to the process settings
        engine: Async engine for the local backend; defaults to database.engine
        session_factory: Session factory bound to engine
        http_client: Optional shared httpx.AsyncClient for the supabase backend
    """
    config = config or default_settings

    if config.auth_backend == BACKEND_SUPABASE:
        provider = SupabaseIdentityProvider(
            config.supabase_url,
            config.supabase_anon_key,
            client=http_client,
            timeout=config.http_timeout_seconds,
        )
        changes = SubscriptionChangeFeed()
        context = AppContext(config, provider, changes=changes)

        def _access_token():
            session = context.store.get_current_session()
            return session.access_token if session else None

        context.remote_subscriptions = SupabaseSubscriptionRepository(
            config.supabase_url,
            config.supabase_service_key or config.supabase_anon_key,
            client=http_client,
            token_getter=None if config.supabase_service_key else _access_token,
            changes=changes,
            timeout=config.http_timeout_seconds,
        )
        return context

    if config.auth_backend != BACKEND_LOCAL:
        raise ValueError(f"Unknown AUTH_BACKEND: {config.auth_backend}")

    if engine is None:
        engine = default_engine
        session_factory = session_factory or AsyncSessionLocal
    if session_factory is None:
        session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    provider = LocalIdentityProvider(session_factory, jwt_ttl_minutes=config.jwt_ttl_minutes)
    return AppContext(config, provider, engine=engine, session_factory=session_factory)


def get_app_context(request: Request) -> AppContext:
    return request.app.state.context


async def get_subscription_repository(request: Request):
    """FastAPI dependency yielding a subscription repository"""
    async with get_app_context(request).subscription_repository() as repo:
        yield repo

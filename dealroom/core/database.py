from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from dealroom.core.config import settings

logger = structlog.get_logger()

_is_sqlite = settings.DATABASE_URL.startswith("sqlite")

if _is_sqlite:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.APP_DEBUG,
        connect_args={"check_same_thread": False, "timeout": 30},
    )
else:
    engine = create_async_engine(
        settings.DATABASE_URL,
        echo=settings.APP_DEBUG,
        pool_size=10,
        max_overflow=10,
        pool_pre_ping=True,               # Drop stale connections before use
        pool_recycle=1800,
        pool_timeout=30,
        connect_args={
            "server_settings": {
                "statement_timeout": "30000",
                "idle_in_transaction_session_timeout": "60000",
                "lock_timeout": "10000",
            },
            "command_timeout": 30,
        },
    )

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp, the storage convention for every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ── After-transaction hooks ───────────────────────────────────────────────────
# Callbacks registered on a request session run once its transaction has been
# committed or rolled back. They receive ``committed`` and must not touch the
# request session itself.

AfterTransactionHook = Callable[[bool], Awaitable[None]]

_HOOKS_KEY = "after_transaction_hooks"


def add_after_transaction_hook(session: AsyncSession, hook: AfterTransactionHook) -> None:
    session.info.setdefault(_HOOKS_KEY, []).append(hook)


async def run_after_transaction_hooks(session: AsyncSession, committed: bool) -> None:
    hooks: list[AfterTransactionHook] = session.info.pop(_HOOKS_KEY, [])
    for hook in hooks:
        try:
            await hook(committed)
        except Exception:
            logger.exception("after_transaction_hook_failed", committed=committed)


async def get_db() -> AsyncGenerator[AsyncSession]:
    async with async_session_factory() as session:
        committed = False
        try:
            yield session
            await session.commit()
            committed = True
        except Exception:
            await session.rollback()
            raise
        finally:
            await run_after_transaction_hooks(session, committed)
            await session.close()

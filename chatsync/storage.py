import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncGenerator, Optional

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, Session, declarative_base

from chatsync.config import settings
from chatsync.errors import StoreUnavailableError
from chatsync.utils import redact_url

logger = logging.getLogger(__name__)

# Base class for SQLAlchemy models
Base = declarative_base()

REQUIRED_TABLES = ("messages", "status_collections", "status_items", "contacts")


class DatabaseState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    ERROR = "error"


class Database:
    """
    Process-wide database handle with explicit connection state.

    The engine is created lazily by connect(). When connecting fails, a
    single background reconnect loop retries after a fixed delay; callers
    asking for a session in the meantime get StoreUnavailableError instead
    of blocking.
    """

    def __init__(self, url: str, retry_delay: float = 5.0):
        self.url = url
        self.retry_delay = retry_delay
        self.state = DatabaseState.DISCONNECTED
        self.error: Optional[str] = None
        self.last_connected_at: Optional[datetime] = None
        self._engine: Optional[Engine] = None
        self._session_factory: Optional[sessionmaker] = None
        self._retry_task: Optional[asyncio.Task] = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            raise StoreUnavailableError("Database not connected")
        return self._engine

    @property
    def is_connected(self) -> bool:
        return self.state == DatabaseState.CONNECTED

    def connect(self) -> bool:
        """
        Create the engine (once), apply the schema and ping the database.

        Returns:
            True when the database is usable, False otherwise. Never raises
            for connection problems; the failure is recorded in state/error.
        """
        self.state = DatabaseState.CONNECTING
        logger.info(f"Connecting to database: {redact_url(self.url)}")
        try:
            if self._engine is None:
                # check_same_thread=False is required for SQLite to work with FastAPI's async
                connect_args = {"check_same_thread": False} if self.url.startswith("sqlite") else {}
                self._engine = create_engine(
                    self.url,
                    connect_args=connect_args,
                    pool_pre_ping=True,
                    echo=False,
                )
                self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=self._engine)

            # Import models to register them with Base.metadata
            from chatsync import models  # noqa: F401

            Base.metadata.create_all(bind=self._engine)
            with self._engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except Exception as e:
            self.state = DatabaseState.ERROR
            self.error = str(e).split("\n")[0]
            logger.error(f"Database connection failed ({redact_url(self.url)}): {self.error}")
            return False

        self.state = DatabaseState.CONNECTED
        self.error = None
        self.last_connected_at = datetime.now(timezone.utc)
        logger.info("Database connected")
        return True

    async def connect_with_retry(self) -> None:
        """Keep trying to connect, sleeping retry_delay seconds between attempts."""
        while not self.connect():
            logger.warning(f"Retrying database connection in {self.retry_delay}s")
            await asyncio.sleep(self.retry_delay)

    def ensure_connecting(self) -> None:
        """Start the reconnect loop unless connected or a loop is already running."""
        if self.is_connected:
            return
        if self._retry_task is not None and not self._retry_task.done():
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (CLI usage); the caller decides whether to retry
            return
        self._retry_task = loop.create_task(self.connect_with_retry())

    def mark_unavailable(self, exc: Exception) -> None:
        self.state = DatabaseState.ERROR
        self.error = str(exc).split("\n")[0]
        logger.error(f"Database became unavailable: {self.error}")
        self.ensure_connecting()

    def session(self) -> Session:
        if not self.is_connected or self._session_factory is None:
            self.ensure_connecting()
            raise StoreUnavailableError()
        return self._session_factory()

    def dispose(self) -> None:
        if self._retry_task is not None:
            self._retry_task.cancel()
            self._retry_task = None
        if self._engine is not None:
            self._engine.dispose()
        self._engine = None
        self._session_factory = None
        self.state = DatabaseState.DISCONNECTED
        logger.info("Database disposed")

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "error": self.error,
            "last_connected_at": self.last_connected_at.isoformat() if self.last_connected_at else None,
        }


database = Database(settings.DATABASE_URL, retry_delay=settings.DB_RETRY_DELAY_SECONDS)


async def get_db() -> AsyncGenerator[Session, None]:
    """
    Dependency to get database session.
    Yields a session and ensures it's closed after use.

    Runs on the event loop (not the threadpool) so that a failed lookup
    can start the reconnect loop.
    """
    db = database.session()
    try:
        yield db
    finally:
        db.close()


def check_db_health() -> bool:
    """
    Check if the database is reachable and schema is applied.

    Returns:
        True if DB is healthy and all tables exist, False otherwise.
    """
    logger.debug("Checking database health...")
    if not database.is_connected:
        logger.debug(f"Database not connected (state={database.state.value})")
        return False
    try:
        with database.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
            existing = set(inspect(conn).get_table_names())
        missing = [name for name in REQUIRED_TABLES if name not in existing]
        if missing:
            logger.error(f"Database schema not applied, missing tables: {missing}")
            return False
        logger.debug("Database health check passed")
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False

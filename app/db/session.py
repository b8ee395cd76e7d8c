from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.utils.logging import get_logger


class Database:
    """Owns the engine and session factory for the backing store.

    ``connect`` is connect-or-reuse: the first call builds the engine, later
    calls return the same session factory. Whoever calls ``connect`` is
    responsible for calling ``dispose`` on shutdown.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self.SessionLocal: async_sessionmaker[AsyncSession] | None = None

    @property
    def connected(self) -> bool:
        return self.engine is not None

    def connect(self) -> async_sessionmaker[AsyncSession]:
        if self.SessionLocal is not None:
            return self.SessionLocal

        engine_kwargs = {"echo": self.echo}
        if ":memory:" in self.url:
            # one shared connection, otherwise every checkout sees an empty db
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        self.engine = create_async_engine(self.url, **engine_kwargs)
        self.SessionLocal = async_sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        get_logger().info(f"Backing store engine created for {self.engine.url!r}")
        return self.SessionLocal

    async def init_db(self):
        self.connect()
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self):
        if self.engine is None:
            return
        await self.engine.dispose()
        self.engine = None
        self.SessionLocal = None

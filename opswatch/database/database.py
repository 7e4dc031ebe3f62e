"""Database engine and session handling for the monitored application database."""

from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import Session, scoped_session, sessionmaker
from sqlalchemy.pool import StaticPool

from .models import Base


def sqlite_file_path(database_url: str) -> Optional[Path]:
    """Filesystem path of a file-backed SQLite URL, None for anything else."""
    if database_url.startswith('sqlite:///') and ':memory:' not in database_url:
        return Path(database_url[len('sqlite:///'):])
    return None


def driver_timeout_args(database_url: str, timeout: float) -> Dict[str, Any]:
    """DBAPI ``connect_args`` bounding connect and statement time on server databases."""
    backend = make_url(database_url).get_backend_name()
    seconds = max(1, int(timeout))
    if backend == 'postgresql':
        return {'connect_timeout': seconds, 'options': f'-c statement_timeout={seconds * 1000}'}
    if backend == 'mysql':
        return {'connect_timeout': seconds, 'read_timeout': seconds, 'write_timeout': seconds}
    return {}


def ensure_database_directory(database_url: str) -> None:
    """Create the parent directory of a file-backed SQLite database."""
    db_path = sqlite_file_path(database_url)
    if db_path is not None:
        db_path.parent.mkdir(parents=True, exist_ok=True)


class DatabaseManager:
    """
    Owns the engine the database and queue probes talk to.

    SQLite URLs get a single shared connection so in-memory databases survive
    across sessions and threads; server databases get a pre-pinged pool with
    ``connect_timeout`` applied to pool checkout, connect and statements.
    """

    def __init__(self, database_url: str, echo: bool = False, connect_timeout: int = 5):
        self.database_url = database_url
        self.connect_timeout = connect_timeout
        self._engine = self._build_engine(database_url, echo)
        self._sessions = scoped_session(sessionmaker(
            bind=self._engine,
            autoflush=False,
            expire_on_commit=False
        ))

    def _build_engine(self, database_url: str, echo: bool) -> Engine:
        if not database_url.startswith('sqlite:'):
            return create_engine(
                database_url,
                echo=echo,
                pool_pre_ping=True,
                pool_recycle=3600,
                pool_timeout=self.connect_timeout,
                connect_args=driver_timeout_args(database_url, self.connect_timeout)
            )

        engine = create_engine(
            database_url,
            echo=echo,
            poolclass=StaticPool,
            connect_args={'check_same_thread': False, 'timeout': self.connect_timeout}
        )

        @event.listens_for(engine, "connect")
        def enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """Session that commits on success and rolls back on any exception."""
        session = self._sessions()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def ping(self) -> bool:
        """Run a trivial round-trip query. Raises on connection failure."""
        with self._engine.connect() as connection:
            return connection.execute(text("SELECT 1")).scalar() == 1

    def count_active_connections(self) -> int:
        """Number of server-side connections, or the local pool's checked-out count."""
        with self._engine.connect() as connection:
            if self.dialect_name == 'mysql':
                row = connection.execute(text("SHOW STATUS LIKE 'Threads_connected'")).fetchone()
                return int(row[1]) if row else 0
            if self.dialect_name == 'postgresql':
                return int(connection.execute(
                    text("SELECT count(*) FROM pg_stat_activity")
                ).scalar() or 0)
        pool = self._engine.pool
        return pool.checkedout() if hasattr(pool, 'checkedout') else 0

    def create_all_tables(self) -> None:
        """Create the queue tables if they do not exist."""
        Base.metadata.create_all(bind=self._engine)

    def close(self) -> None:
        self._sessions.remove()
        self._engine.dispose()

"""Database engine and session factory used across the application."""

from collections.abc import Iterator
from contextlib import contextmanager

from loguru import logger
from sqlalchemy import Engine, StaticPool, text
from sqlmodel import Session, SQLModel, create_engine

from src.accounts.runtime.config.config_data import ConfigData
from src.accounts.runtime.context import get_config


class DbSessionService:
    def __init__(self, engine: Engine | None = None):
        """Initialize the shared database engine and session factory."""
        if engine is not None:
            self._engine = engine
            return

        logger.info("Setting up database engine and session factory")
        main_config = get_config()
        db_config = main_config.database

        engine_kwargs: dict = {
            "pool_pre_ping": True,  # Validate connections before use
            "echo": False,
            "connect_args": self._get_connect_args(main_config),
        }
        if db_config.url in ("sqlite://", "sqlite:///:memory:"):
            # One shared connection, otherwise every session sees an empty database
            engine_kwargs["poolclass"] = StaticPool
        elif not db_config.is_sqlite:
            engine_kwargs.update(
                {
                    "pool_size": db_config.pool_size,
                    "max_overflow": db_config.max_overflow,
                    "pool_timeout": db_config.pool_timeout,
                    "pool_recycle": db_config.pool_recycle,
                }
            )

        self._engine = create_engine(db_config.connection_string, **engine_kwargs)
        logger.info(
            "Database engine initialized for environment: {}",
            main_config.app.environment,
        )

    def _get_connect_args(self, config: ConfigData) -> dict:
        """Get database-specific connection arguments.

        Statements are bounded by ``identity.store_timeout_ms`` inside the
        database, so a write that runs out of time is rolled back rather than
        committed after the caller gave up on it.
        """
        connect_args = {}
        timeout_ms = config.identity.store_timeout_ms

        if "postgresql" in config.database.url:
            connect_args.update(
                {
                    "application_name": f"{config.app.environment}_accounts",
                    "connect_timeout": 30,
                    "options": f"-c statement_timeout={timeout_ms} -c lock_timeout={timeout_ms}",
                }
            )
        elif config.database.is_sqlite:
            connect_args.update(
                {
                    "check_same_thread": False,
                    "timeout": timeout_ms / 1000,  # Lock timeout
                }
            )
            if config.app.environment == "production":
                logger.warning(
                    "SQLite is not recommended for production use. "
                    "Consider PostgreSQL for better performance and reliability."
                )

        return connect_args

    @property
    def engine(self) -> Engine:
        return self._engine

    def create_all(self) -> None:
        """Create all database tables."""
        from src.accounts.entities.core.user_record import UserRecordTable  # noqa: F401

        SQLModel.metadata.create_all(self._engine)
        logger.info("Database initialized with tables.")

    def get_session(self) -> Session:
        """Return a new SQLModel session bound to the shared engine."""
        return Session(self._engine, expire_on_commit=False)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Context manager style helper: commit on success, roll back on error."""
        db = self.get_session()
        try:
            yield db
            db.commit()
        except Exception as e:
            db.rollback()
            logger.error(
                "Database transaction failed",
                error_type=type(e).__name__,
                error_message=str(e),
            )
            raise
        finally:
            db.close()

    def health_check(self) -> bool:
        """Perform a health check on the database connection."""
        try:
            with self._engine.connect() as connection:
                connection.execute(text("SELECT 1"))
                return True
        except Exception as e:
            logger.error(
                "Database health check failed",
                error_type=type(e).__name__,
                error_message=str(e),
            )
            return False

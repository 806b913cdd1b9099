"""Database initialization script."""

from src.accounts.core.services.database.db_session import DbSessionService


def init_database(db: DbSessionService | None = None) -> None:
    """Create the user record table if it does not exist yet."""
    (db or DbSessionService()).create_all()


if __name__ == "__main__":
    init_database()

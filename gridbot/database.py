"""SQLModel database engine and table creation."""

from sqlmodel import SQLModel, create_engine

from gridbot.config import settings

# SQLite needs check_same_thread=False; PostgreSQL does not
connect_args = {}
if settings.database_url.startswith("sqlite"):
    connect_args["check_same_thread"] = False

engine = create_engine(
    settings.database_url,
    echo=False,
    connect_args=connect_args,
)


def create_db_and_tables():
    """Create all tables. Called on startup."""
    import gridbot.models  # noqa: F401  registers table metadata

    SQLModel.metadata.create_all(engine)

"""Database connection for StroyManager API."""
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from api.config import settings

# Handle different DB_PATH formats:
# - ":memory:" → sqlite:///:memory: (in-memory test DB)
# - Absolute path (/app/db/stroymanager.db) → sqlite:////app/db/stroymanager.db
# - Relative path (db/stroymanager.db) → sqlite:///./db/stroymanager.db
if settings.DB_PATH == ":memory:":
    db_url = "sqlite:///:memory:"
elif settings.DB_PATH.startswith('/'):
    db_url = f"sqlite:///{settings.DB_PATH}"
else:
    db_url = f"sqlite:///./{settings.DB_PATH}"

engine = create_engine(
    db_url,
    connect_args={"check_same_thread": False}
)


@event.listens_for(engine, "connect")
def _register_functions(dbapi_connection, connection_record):
    # SQLite lower() only folds ASCII; worker names are Cyrillic
    dbapi_connection.create_function("lower", 1, lambda value: value.lower() if isinstance(value, str) else value)


# Session factory
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

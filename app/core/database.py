from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from app.core.config import settings


def _connect_args(database_url: str) -> dict:
    """
    Per-connection timeouts for the store.

    Only PostgreSQL understands these options; other drivers get none.
    """
    if not database_url.startswith("postgresql"):
        return {}
    return {
        "connect_timeout": settings.DB_CONNECT_TIMEOUT_SECONDS,
        "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
    }


def escape_ini_value(value: str) -> str:
    """Escape % so configparser (alembic.ini) stores the value verbatim."""
    return value.replace("%", "%%")


# Create SQLAlchemy engine
engine = create_engine(
    settings.DATABASE_URL,
    pool_pre_ping=True,  # Verify connections before using them
    pool_size=10,  # Connection pool size
    max_overflow=20,  # Allow up to 20 connections beyond pool_size
    connect_args=_connect_args(settings.DATABASE_URL),
)

# Create SessionLocal class
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create Base class for models
Base = declarative_base()


def get_db():
    """
    Dependency function to get database session.
    Used in FastAPI endpoints with Depends(get_db)
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """
    Initialize database.

    We rely on Alembic for table creation, so this only imports the models
    to register them on the metadata.

    Use "alembic upgrade head" to create/update database schema.
    """
    from app.models import user, otp_code, user_session  # noqa: F401

import os
import logging
from urllib.parse import urlparse

from dotenv import load_dotenv, find_dotenv

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import NullPool

# load .env: prefer crowdledger/.env next to this file, fallback to project .env
env_path = os.path.join(os.path.dirname(__file__), ".env")
if not os.path.exists(env_path):
    env_path = find_dotenv()  # try locating a .env in parent folders
load_dotenv(env_path)

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def resolve_database_url() -> str:
    """
    Resolve the final DATABASE_URL to use.
    Priority:
      1. DATABASE_URL if it's already a Postgres URL (postgresql://, postgresql+psycopg2://)
      2. DATABASE_URL with the legacy postgres:// scheme, rewritten to postgresql://
      3. Fallback env vars: SUPABASE_DB_URL, POSTGRES_URL
      4. sqlite:/// URLs, accepted for local runs and the test suite
    """
    raw = os.getenv("DATABASE_URL")
    if not raw:
        for alt in ("SUPABASE_DB_URL", "POSTGRES_URL"):
            alt_val = os.getenv(alt)
            if alt_val:
                logger.info("Using fallback DB URL from env var: %s", alt)
                raw = alt_val
                break
    if not raw:
        raise ValueError(
            "DATABASE_URL not set. Add DATABASE_URL pointing to your Postgres connection string."
        )

    raw = raw.strip().strip('"').strip("'")
    if raw.startswith("postgres://"):
        logger.info("Rewrote 'postgres://' -> 'postgresql://' for SQLAlchemy")
        return raw.replace("postgres://", "postgresql://", 1)
    if raw.startswith(("postgresql://", "postgresql+", "sqlite:")):
        return raw

    raise ValueError(
        "DATABASE_URL must be a Postgres URL ('postgresql://<user>:<pass>@<host>:5432/<db>') "
        "or a sqlite:/// URL for local runs."
    )


DATABASE_URL = resolve_database_url()
logger.info("Loaded DATABASE_URL from environment (value hidden)")

is_sqlite = DATABASE_URL.startswith("sqlite:")

# Basic validation (do not log secrets)
if not is_sqlite:
    parsed_url = urlparse(DATABASE_URL)
    if not parsed_url.scheme or not parsed_url.hostname or parsed_url.path in ("", "/"):
        logger.error("Invalid DATABASE_URL format: missing required parts")
        raise ValueError("DATABASE_URL missing required parts")

# NullPool leaves pooling to the Postgres pooler in front of the database.
# Set USE_NULL_POOL=0 to use a local pool instead.
use_null_pool = os.getenv("USE_NULL_POOL", "1") == "1"

if use_null_pool or is_sqlite:
    engine_kwargs = {
        "poolclass": NullPool,
    }
else:
    engine_kwargs = {
        "pool_size": 15,
        "max_overflow": 2,
        "pool_recycle": 300,      # Recycle connections every 5 minutes
        "pool_pre_ping": True,    # Verify connections before use
        "pool_timeout": 30,       # Timeout waiting for a connection
    }

if is_sqlite:
    engine_kwargs["connect_args"] = {"check_same_thread": False}

engine = create_engine(DATABASE_URL, **engine_kwargs)

if is_sqlite:
    @event.listens_for(engine, "connect")
    def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
logger.info("Using sync SQLAlchemy engine")
Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

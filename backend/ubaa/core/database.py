from sqlmodel import SQLModel, create_engine, Session
from sqlalchemy.pool import StaticPool
from .settings import settings

def _engine_options(url: str) -> dict:
    if not url.startswith("sqlite"):
        return {}
    # Requests are served from the threadpool
    options = {"connect_args": {"check_same_thread": False}}
    if url in ("sqlite://", "sqlite:///:memory:"):
        # In-memory SQLite exists per connection; keep a single shared one
        options["poolclass"] = StaticPool
    return options

engine = create_engine(settings.DATABASE_URL, **_engine_options(settings.DATABASE_URL))

def create_db_and_tables():
    SQLModel.metadata.create_all(engine)

def get_session():
    """Yields one audit DB session per request."""
    with Session(engine) as db:
        yield db

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from common.settings import settings

def make_engine(url: str, statement_timeout_ms: int = 5000) -> Engine:
    """Engine whose every statement is bounded by the store's own timeout."""
    if url.startswith("sqlite"):
        connect_args = {"timeout": statement_timeout_ms / 1000, "check_same_thread": False}
        return create_engine(url, connect_args=connect_args)
    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={statement_timeout_ms}"
    return create_engine(
        url,
        connect_args=connect_args,
        pool_pre_ping=True,
        pool_timeout=30,
        isolation_level="READ COMMITTED",
    )

def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)

engine = make_engine(settings.database_uri, settings.db_statement_timeout_ms)
SessionLocal = make_session_factory(engine)

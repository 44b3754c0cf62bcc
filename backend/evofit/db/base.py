from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
from evofit.core.config import settings


def build_engine(url: str, echo: bool = False):
    """Create an engine; SQLite connections are shared across threads"""
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, echo=echo, connect_args=connect_args, future=True)


engine = build_engine(settings.database_url, echo=settings.database_echo)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

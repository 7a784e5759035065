from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker


def _connect_args(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"check_same_thread": False}
    return {}


def build_engine(url: str):
    return create_engine(url, connect_args=_connect_args(url), future=True)


def build_session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


Base = declarative_base()

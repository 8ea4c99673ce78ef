# humanity_link/db.py
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base
import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./humanity_link.db")


def make_engine(url: str = DATABASE_URL):
    return create_engine(url, connect_args={"check_same_thread": False} if "sqlite" in url else {})


engine = make_engine()
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def init_db(bind=None):
    import humanity_link.models as models  # noqa: F401  registers tables
    Base.metadata.create_all(bind=bind or engine)

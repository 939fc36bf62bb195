from sqlalchemy import create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from app import config


class Base(DeclarativeBase):
    pass


engine = create_engine(
    config.DATABASE_URL,
    connect_args={"check_same_thread": False},
)

# Rows outlive their commit: the executor keeps reading a run after updating it.
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)


def init_db():
    from app.db import tables  # noqa: F401 - registers table models
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

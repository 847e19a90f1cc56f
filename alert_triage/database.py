from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from alert_triage.config import settings


def build_engine(database_url: str):
    # SQLite doesn't support pool_size/max_overflow, PostgreSQL does
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False}
        )
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20
    )


engine = build_engine(settings.DATABASE_URL)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

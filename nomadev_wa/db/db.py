from sqlalchemy import create_engine, text
from sqlalchemy.orm import sessionmaker

from nomadev_wa.settings import get_settings


def build_engine(url: str):
    connect_args = {"connect_timeout": 3} if url.startswith("mysql") else {}
    return create_engine(url, pool_pre_ping=True, connect_args=connect_args)


engine = build_engine(get_settings().database_url)

SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def ping_db(db) -> dict:
    r = db.execute(text("SELECT 1 AS ok")).mappings().one()
    return {"ok": int(r["ok"])}

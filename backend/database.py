# backend/database.py
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, String, create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import get_settings

Base = declarative_base()


class Preference(Base):
    """利用者の設定値（キー/値）。現状は前回選択した駅のみ"""
    __tablename__ = "preferences"

    key = Column(String, primary_key=True, index=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=lambda: datetime.now(timezone.utc))


def create_db_engine(url: str, **kwargs) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # SQLite はデフォルトでマルチスレッド通信を許可しないため check_same_thread=False が必要
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args, **kwargs)


def create_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = create_db_engine(get_settings().database_url)
SessionLocal = create_session_factory(engine)


def init_db(bind: Engine = engine) -> None:
    """テーブルを作成する"""
    Base.metadata.create_all(bind=bind)

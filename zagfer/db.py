import logging

from fastapi import HTTPException
from sqlmodel import SQLModel, Session, create_engine

from zagfer.errors import ZagferError
from zagfer.settings import get_settings

logger = logging.getLogger("zagfer.db")

DATABASE_URL = get_settings().database_url
engine = create_engine(
    DATABASE_URL,
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
)


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    session = Session(engine)
    try:
        yield session
    except (HTTPException, ZagferError):
        # 业务/鉴权错误：store 自己已经回滚过了，直接抛出
        raise
    except Exception as e:
        # 其他异常：更像程序错误/DB错误，回滚更合理
        session.rollback()
        logger.error("rollback: %s %s", type(e).__name__, e)
        raise
    finally:
        session.close()

from typing import Optional
from sqlalchemy import Column, DateTime, JSON
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field
from datetime import datetime, timezone


def utcnow() -> datetime:
    # 统一用带时区的 UTC
    return datetime.now(timezone.utc)


class AwareDateTime(TypeDecorator):
    """库里存 UTC-naive，读写时一律是带时区的 UTC；不依赖 sqlmodel 版本的默认映射。"""

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            # 没带时区的按 UTC 处理
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class User(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str
    matricula: str = Field(index=True, unique=True)
    active: bool = Field(default=True)
    role: str = Field(default="user")  # admin / user


class Tool(SQLModel, table=True):
    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    category: str = Field(index=True)
    size: Optional[str] = None
    bmp: Optional[str] = None          # 资产编号（可选）
    sector: str
    status: str = Field(default="AVAILABLE", index=True)  # AVAILABLE / UNAVAILABLE


class HistoryRecord(SQLModel, table=True):
    # seq 只记录写入顺序；对外的编号是 id
    seq: Optional[int] = Field(default=None, primary_key=True)
    id: str = Field(index=True, unique=True)

    timestamp: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(AwareDateTime(), nullable=False, index=True),
    )
    action_type: str = Field(index=True)  # CHECKOUT / RETURN

    # 登录的操作员
    dispatcher_id: str
    dispatcher_name: str
    dispatcher_matricula: str

    # 实际领用/归还的人（手填）
    responsible_name: str
    responsible_matricula: str

    # 不做外键：刀具删掉后流水里保留旧编号
    tool_ids: list[str] = Field(default_factory=list, sa_column=Column(JSON))
    tools_summary: str = ""

    expected_return_date: Optional[datetime] = Field(
        default=None,
        sa_column=Column(AwareDateTime(), nullable=True),
    )

"""
实体存储：全项目只有这里碰数据库。

SqlEntityStore 跑在 SQLModel session 上；atomic() 里的写只 flush，块结束时统一提交，出错整体回滚。
StoreWithFallback 包一层任意 store，把读结果镜像到本地 JSON 文件，数据库连不上时还能显示旧数据。
"""

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, Optional, Protocol, Sequence

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from zagfer.errors import DuplicateError, NotFoundError, PersistenceError
from zagfer.models import HistoryRecord, Tool, User

logger = logging.getLogger("zagfer.store")

# 同一进程里所有 LocalCache 共用，线程池里并发保存不会互相覆盖
_cache_lock = threading.Lock()


class EntityStore(Protocol):
    supports_atomic: bool

    def atomic(self): ...

    def list_tools(self) -> list[Tool]: ...
    def list_users(self) -> list[User]: ...
    def list_history(self) -> list[HistoryRecord]: ...

    def get_tool(self, tool_id: str) -> Optional[Tool]: ...
    def get_user(self, user_id: str) -> Optional[User]: ...
    def get_history(self, record_id: str) -> Optional[HistoryRecord]: ...
    def find_user_by_matricula(self, matricula: str) -> Optional[User]: ...

    def create_tool(self, tool: Tool) -> Tool: ...
    def create_tools(self, tools: Sequence[Tool]) -> list[Tool]: ...
    def update_tool(self, tool_id: str, changes: dict) -> Tool: ...
    def delete_tool(self, tool_id: str) -> None: ...
    def set_tools_status(self, tool_ids: Sequence[str], status: str) -> list[Tool]: ...

    def create_user(self, user: User) -> User: ...
    def create_users(self, users: Sequence[User]) -> list[User]: ...
    def update_user(self, user_id: str, changes: dict) -> User: ...
    def delete_user(self, user_id: str) -> None: ...

    def append_history(self, record: HistoryRecord) -> HistoryRecord: ...
    def update_history_deadline(self, record_id: str, new_deadline: datetime) -> HistoryRecord: ...


class SqlEntityStore:
    supports_atomic = True

    def __init__(self, session: Session):
        self.session = session
        self._depth = 0

    # ---------- transaction ----------

    @contextmanager
    def atomic(self) -> Iterator["SqlEntityStore"]:
        if self._depth:
            # 嵌套调用并入外层事务
            yield self
            return

        self._depth += 1
        try:
            yield self
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning("atomic block rolled back: %s", e)
            raise DuplicateError("Registro duplicado", "DUPLICATE") from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("atomic block rolled back: %s", e)
            raise PersistenceError("Falha ao gravar no banco de dados") from e
        except Exception:
            self.session.rollback()
            raise
        finally:
            self._depth -= 1

    def _commit(self, duplicate_code: str = "DUPLICATE", duplicate_message: str = "Registro duplicado") -> None:
        if self._depth:
            self.session.flush()
            return
        try:
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateError(duplicate_message, duplicate_code) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("commit failed: %s", e)
            raise PersistenceError("Falha ao gravar no banco de dados") from e

    def _read(self, stmt) -> list:
        try:
            return list(self.session.exec(stmt).all())
        except SQLAlchemyError as e:
            logger.error("read failed: %s", e)
            raise PersistenceError("Falha ao ler do banco de dados") from e

    def _get(self, model, key):
        try:
            return self.session.get(model, key)
        except SQLAlchemyError as e:
            logger.error("read failed: %s", e)
            raise PersistenceError("Falha ao ler do banco de dados") from e

    # ---------- reads ----------

    def list_tools(self) -> list[Tool]:
        return self._read(select(Tool).order_by(Tool.name.asc(), Tool.id.asc()))

    def list_users(self) -> list[User]:
        return self._read(select(User).order_by(User.name.asc(), User.id.asc()))

    def list_history(self) -> list[HistoryRecord]:
        # 最新写入的在前：归属领用单的查找依赖这个顺序
        return self._read(select(HistoryRecord).order_by(HistoryRecord.seq.desc()))

    def get_tool(self, tool_id: str) -> Optional[Tool]:
        return self._get(Tool, tool_id)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._get(User, user_id)

    def get_history(self, record_id: str) -> Optional[HistoryRecord]:
        rows = self._read(select(HistoryRecord).where(HistoryRecord.id == record_id))
        return rows[0] if rows else None

    def find_user_by_matricula(self, matricula: str) -> Optional[User]:
        rows = self._read(select(User).where(User.matricula == matricula))
        return rows[0] if rows else None

    # ---------- tools ----------

    def _require_tool(self, tool_id: str) -> Tool:
        tool = self.get_tool(tool_id)
        if not tool:
            raise NotFoundError(f"Ferramenta não encontrada: {tool_id}", "TOOL_NOT_FOUND")
        return tool

    def create_tool(self, tool: Tool) -> Tool:
        return self.create_tools([tool])[0]

    def create_tools(self, tools: Sequence[Tool]) -> list[Tool]:
        seen = set()
        for tool in tools:
            if tool.id in seen or self.get_tool(tool.id):
                raise DuplicateError(f"Ferramenta já existe: {tool.id}", "TOOL_EXISTS")
            seen.add(tool.id)

        self.session.add_all(tools)
        self._commit("TOOL_EXISTS", "Ferramenta já existe")
        for tool in tools:
            self.session.refresh(tool)
        return list(tools)

    def update_tool(self, tool_id: str, changes: dict) -> Tool:
        tool = self._require_tool(tool_id)
        for key, value in changes.items():
            setattr(tool, key, value)
        self.session.add(tool)
        self._commit()
        self.session.refresh(tool)
        return tool

    def delete_tool(self, tool_id: str) -> None:
        tool = self._require_tool(tool_id)
        self.session.delete(tool)
        self._commit()

    def set_tools_status(self, tool_ids: Sequence[str], status: str) -> list[Tool]:
        tools = [self._require_tool(tid) for tid in tool_ids]
        for tool in tools:
            tool.status = status
            self.session.add(tool)
        self._commit()
        return tools

    # ---------- users ----------

    def _require_user(self, user_id: str) -> User:
        user = self.get_user(user_id)
        if not user:
            raise NotFoundError(f"Usuário não encontrado: {user_id}", "USER_NOT_FOUND")
        return user

    def create_user(self, user: User) -> User:
        return self.create_users([user])[0]

    def create_users(self, users: Sequence[User]) -> list[User]:
        matriculas = set()
        for user in users:
            # 先查一遍给友好提示；并发下靠 unique 约束兜底
            if user.matricula in matriculas or self.find_user_by_matricula(user.matricula):
                raise DuplicateError(f"Matrícula já cadastrada: {user.matricula}", "MATRICULA_EXISTS")
            matriculas.add(user.matricula)

        self.session.add_all(users)
        self._commit("MATRICULA_EXISTS", "Matrícula já cadastrada")
        for user in users:
            self.session.refresh(user)
        return list(users)

    def update_user(self, user_id: str, changes: dict) -> User:
        user = self._require_user(user_id)
        for key, value in changes.items():
            setattr(user, key, value)
        self.session.add(user)
        self._commit("MATRICULA_EXISTS", "Matrícula já cadastrada")
        self.session.refresh(user)
        return user

    def delete_user(self, user_id: str) -> None:
        user = self._require_user(user_id)
        self.session.delete(user)
        self._commit()

    # ---------- history ----------

    def append_history(self, record: HistoryRecord) -> HistoryRecord:
        self.session.add(record)
        self._commit("HISTORY_EXISTS", "Registro de histórico duplicado")
        return record

    def update_history_deadline(self, record_id: str, new_deadline: datetime) -> HistoryRecord:
        record = self.get_history(record_id)
        if not record:
            raise NotFoundError(f"Registro não encontrado: {record_id}", "HISTORY_NOT_FOUND")
        record.expected_return_date = new_deadline
        self.session.add(record)
        self._commit()
        self.session.refresh(record)
        return record


class LocalCache:
    """每张表最近一次成功读取的 JSON 快照。"""

    MODELS = {"tools": Tool, "users": User, "history": HistoryRecord}

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def _load_all(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            return json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.error("cache %s unreadable: %s", self.path, e)
            return {}

    def save(self, kind: str, items: Sequence) -> None:
        rows = [item.model_dump(mode="json") for item in items]
        # 读-改-写整段加锁；先写临时文件再 os.replace，读的一方不会看到半个文件
        with _cache_lock:
            data = self._load_all()
            data[kind] = rows
            tmp_name = None
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with tempfile.NamedTemporaryFile(
                        "w", dir=self.path.parent, prefix=self.path.name, suffix=".tmp",
                        delete=False, encoding="utf-8",
                ) as fh:
                    tmp_name = fh.name
                    json.dump(data, fh, ensure_ascii=False)
                os.replace(tmp_name, self.path)
            except OSError as e:
                if tmp_name and os.path.exists(tmp_name):
                    os.remove(tmp_name)
                # 缓存写不进去不影响主流程
                logger.warning("cache %s not written: %s", self.path, e)

    def load(self, kind: str) -> Optional[list]:
        data = self._load_all()
        if kind not in data:
            return None
        model = self.MODELS[kind]
        return [model.model_validate(row) for row in data[kind]]


class StoreWithFallback:
    """
    读走 primary，同时把结果镜像进 cache；primary 抛 PersistenceError 时改读最近的快照。
    写操作只走 primary，失败就直接失败。
    """

    def __init__(self, primary: EntityStore, cache: LocalCache):
        self.primary = primary
        self.cache = cache

    @property
    def supports_atomic(self) -> bool:
        return self.primary.supports_atomic

    def __getattr__(self, name):
        # 写操作、atomic() 等直接交给主存储
        return getattr(self.primary, name)

    def _list(self, kind: str, reader):
        try:
            items = reader()
        except PersistenceError:
            cached = self.cache.load(kind)
            if cached is None:
                raise
            logger.warning("primary store unavailable, serving cached %s (%d rows)", kind, len(cached))
            return cached
        self.cache.save(kind, items)
        return items

    def list_tools(self) -> list[Tool]:
        return self._list("tools", self.primary.list_tools)

    def list_users(self) -> list[User]:
        return self._list("users", self.primary.list_users)

    def list_history(self) -> list[HistoryRecord]:
        return self._list("history", self.primary.list_history)

    def _find(self, kind: str, reader, predicate):
        try:
            return reader()
        except PersistenceError:
            cached = self.cache.load(kind)
            if cached is None:
                raise
            logger.warning("primary store unavailable, looking up %s in cache", kind)
            return next((item for item in cached if predicate(item)), None)

    def get_tool(self, tool_id: str) -> Optional[Tool]:
        return self._find("tools", lambda: self.primary.get_tool(tool_id), lambda t: t.id == tool_id)

    def get_user(self, user_id: str) -> Optional[User]:
        return self._find("users", lambda: self.primary.get_user(user_id), lambda u: u.id == user_id)

    def get_history(self, record_id: str) -> Optional[HistoryRecord]:
        return self._find("history", lambda: self.primary.get_history(record_id), lambda h: h.id == record_id)

    def find_user_by_matricula(self, matricula: str) -> Optional[User]:
        return self._find(
            "users",
            lambda: self.primary.find_user_by_matricula(matricula),
            lambda u: u.matricula == matricula,
        )

import threading
from datetime import datetime, timedelta, timezone

import pytest
from sqlmodel import Session

from zagfer.errors import DuplicateError, NotFoundError, PersistenceError
from zagfer.models import HistoryRecord, Tool
from zagfer.store import LocalCache, SqlEntityStore, StoreWithFallback


def _record(rid, tool_ids, at):
    return HistoryRecord(
        id=rid,
        timestamp=at,
        action_type="CHECKOUT",
        dispatcher_id="u-admin",
        dispatcher_name="Gerente",
        dispatcher_matricula="459524",
        responsible_name="3S EDIMAR",
        responsible_matricula="GAP-SP",
        tool_ids=tool_ids,
    )


class DownStore:
    """每个调用都像数据库连不上一样失败。"""

    supports_atomic = True

    def _down(self, *args, **kwargs):
        raise PersistenceError("Falha ao ler do banco de dados")

    list_tools = list_users = list_history = _down
    get_tool = get_user = get_history = find_user_by_matricula = _down
    create_tool = update_tool = delete_tool = _down


def test_list_history_is_newest_appended_first(store):
    # 时间戳故意倒着写：顺序只看写入先后
    store.append_history(_record("h1", ["T1"], datetime(2026, 1, 10, tzinfo=timezone.utc)))
    store.append_history(_record("h2", ["T2"], datetime(2026, 1, 1, tzinfo=timezone.utc)))
    store.append_history(_record("h3", ["T3"], datetime(2026, 1, 5, tzinfo=timezone.utc)))

    assert [h.id for h in store.list_history()] == ["h3", "h2", "h1"]
    assert store.get_history("h2").tool_ids == ["T2"]
    assert store.get_history("nope") is None


def test_duplicate_tool_id(store):
    with pytest.raises(DuplicateError) as exc:
        store.create_tool(Tool(id="T1", name="Outra", category="Manual", sector="Geral"))
    assert exc.value.code == "TOOL_EXISTS"


def test_missing_entities(store):
    with pytest.raises(NotFoundError) as exc:
        store.update_tool("NOPE", {"name": "x"})
    assert exc.value.code == "TOOL_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc:
        store.set_tools_status(["T1", "NOPE"], "UNAVAILABLE")
    assert exc.value.code == "TOOL_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc:
        store.update_history_deadline("NOPE", datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert exc.value.code == "HISTORY_NOT_FOUND"


def test_atomic_rolls_back_all_writes(store):
    with pytest.raises(NotFoundError):
        with store.atomic():
            store.set_tools_status(["T1"], "UNAVAILABLE")
            store.set_tools_status(["NOPE"], "UNAVAILABLE")

    assert store.get_tool("T1").status == "AVAILABLE"


def test_fallback_serves_cached_reads(store, tmp_path):
    cache = LocalCache(tmp_path / "cache.json")
    store.append_history(_record("h1", ["T1", "T2"], datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc)))

    online = StoreWithFallback(store, cache)
    tools = online.list_tools()
    online.list_users()
    online.list_history()

    offline = StoreWithFallback(DownStore(), cache)

    assert [t.id for t in offline.list_tools()] == [t.id for t in tools]
    assert offline.get_tool("T3").name == "Alicate Universal"
    assert offline.get_tool("NOPE") is None
    assert offline.find_user_by_matricula("459524").id == "u-admin"

    history = offline.list_history()
    assert [h.id for h in history] == ["h1"]
    assert history[0].tool_ids == ["T1", "T2"]
    assert history[0].timestamp == datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc)


def test_fallback_without_cache_raises(tmp_path):
    offline = StoreWithFallback(DownStore(), LocalCache(tmp_path / "missing.json"))

    with pytest.raises(PersistenceError):
        offline.list_tools()
    with pytest.raises(PersistenceError):
        offline.get_user("u-admin")


def test_fallback_writes_go_to_primary(store, tmp_path):
    cache = LocalCache(tmp_path / "cache.json")
    StoreWithFallback(store, cache).list_tools()

    offline = StoreWithFallback(DownStore(), cache)
    with pytest.raises(PersistenceError):
        offline.create_tool(Tool(id="T9", name="Nova", category="Manual", sector="Geral"))

    online = StoreWithFallback(store, cache)
    assert online.supports_atomic is True
    online.create_tool(Tool(id="T9", name="Nova", category="Manual", sector="Geral"))
    assert store.get_tool("T9").name == "Nova"


def test_history_datetimes_read_back_as_utc(engine, store):
    sp = timezone(timedelta(hours=-3))
    store.append_history(_record("h1", ["T1"], datetime(2026, 1, 31, 22, 0, tzinfo=sp)))
    store.update_history_deadline("h1", datetime(2026, 2, 2, 8, 0, tzinfo=sp))

    # 换一个 session，确保值是从库里读出来的
    with Session(engine) as session:
        record = SqlEntityStore(session).get_history("h1")
        assert record.timestamp == datetime(2026, 2, 1, 1, 0, tzinfo=timezone.utc)
        assert record.timestamp.utcoffset() == timedelta(0)
        assert record.expected_return_date == datetime(2026, 2, 2, 11, 0, tzinfo=timezone.utc)
        assert record.expected_return_date.utcoffset() == timedelta(0)


def test_cache_saves_from_threads_keep_every_table(store, tmp_path):
    path = tmp_path / "cache.json"
    store.append_history(_record("h1", ["T1"], datetime(2026, 1, 10, 8, 30, tzinfo=timezone.utc)))
    tables = {"tools": store.list_tools(), "users": store.list_users(), "history": store.list_history()}

    threads = [
        threading.Thread(target=LocalCache(path).save, args=(kind, items))
        for _ in range(10)
        for kind, items in tables.items()
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    cache = LocalCache(path)
    assert [t.id for t in cache.load("tools")] == [t.id for t in tables["tools"]]
    assert [u.id for u in cache.load("users")] == [u.id for u in tables["users"]]
    assert [h.id for h in cache.load("history")] == ["h1"]
    assert list(tmp_path.glob("*.tmp")) == []

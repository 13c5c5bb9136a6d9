from sqlmodel import Session

from zagfer.seed import INITIAL_TOOLS, INITIAL_USERS, load_initial_data
from zagfer.services.accounts import authenticate
from zagfer.store import SqlEntityStore


def test_initial_data_loads_once(engine):
    with Session(engine) as session:
        store = SqlEntityStore(session)

        assert load_initial_data(store) is True
        assert len(store.list_tools()) == len(INITIAL_TOOLS)
        assert len(store.list_users()) == len(INITIAL_USERS)
        assert all(t.status == "AVAILABLE" for t in store.list_tools())
        assert authenticate(store, "459524").role == "admin"

        assert load_initial_data(store) is False
        assert len(store.list_tools()) == len(INITIAL_TOOLS)


def test_initial_data_skipped_when_database_has_rows(store):
    assert load_initial_data(store) is False
    assert len(store.list_tools()) == 5

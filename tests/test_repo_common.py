from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy import text

from snapvcs.base import StateStore
from snapvcs.config import RepoConfig
from snapvcs.errors import ErrorKind
from snapvcs.impl.memory import create_memory_state_store
from snapvcs.impl.sql import SqlStateStore, create_sql_state_store
from snapvcs.repository import Repository

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class TickingClock:
    """Returns a strictly increasing timestamp on every call."""

    def __init__(self) -> None:
        self.ticks = 0

    def __call__(self) -> datetime:
        self.ticks += 1
        return T0 + timedelta(seconds=self.ticks)


class StoreProvider:
    def create(self, path: Path) -> StateStore:
        raise NotImplementedError()

    def corrupt(self, store: StateStore, name: str, payload: str) -> None:
        raise NotImplementedError()

    def cleanup(self, store: StateStore) -> None:
        store.dispose()


class MemoryStoreProvider(StoreProvider):
    def __init__(self) -> None:
        # Shared "disk" so a second store created on the same path sees the data
        self.data: dict[str, Any] = {}

    def create(self, path: Path) -> StateStore:
        return create_memory_state_store(self.data)

    def corrupt(self, store: StateStore, name: str, payload: str) -> None:
        self.data["structures"][name]["payload"] = payload


class SqlStoreProvider(StoreProvider):
    def create(self, path: Path) -> StateStore:
        return create_sql_state_store(path / "state-v1.db", lock_timeout=0.2)

    def corrupt(self, store: StateStore, name: str, payload: str) -> None:
        assert isinstance(store, SqlStateStore)
        with store.session_maker() as session:
            with session.begin():
                session.execute(
                    text("UPDATE structures SET payload = :payload WHERE name = :name"),
                    {"payload": payload, "name": name},
                )


PROVIDERS = [
    MemoryStoreProvider,
    SqlStoreProvider,
]
PROVIDER_IDS = ["memory", "sql"]


def make_repo(path: Path, store: StateStore) -> Repository:
    root = path / "work"
    root.mkdir(exist_ok=True)
    config = RepoConfig(root=root, author="tester")
    return Repository(config, store, clock=TickingClock())


@pytest.mark.parametrize("provider_cls", PROVIDERS, ids=PROVIDER_IDS)
def test_repo_lifecycle(tmp_path: Path, provider_cls: type[StoreProvider]):
    provider = provider_cls()
    store = provider.create(tmp_path)
    repo = make_repo(tmp_path, store)
    try:
        with repo:
            root = repo.init().unwrap()
            assert root.parent is None
            assert repo.graph.current_branch == "main"

        (repo.config.root / "app.txt").write_bytes(b"version 1")
        with repo:
            repo.add("app.txt").unwrap()
            assert repo.stage.is_dirty() is True, "Stage should be dirty after add"
            c1 = repo.commit("first").unwrap()
            assert repo.stage.is_dirty() is False, "Stage should be clean after commit"

        with repo:
            head = repo.graph.head()
            assert head is not None and head.id == c1.id
            assert repo.store.get(head.snapshot["app.txt"]).unwrap() == b"version 1"

        (repo.config.root / "app.txt").write_bytes(b"version 2")
        with repo:
            repo.add("app.txt").unwrap()
            c2 = repo.commit("second").unwrap()
            assert c2.parent == c1.id
            assert [c.id for c in repo.log()] == [c2.id, c1.id, root.id]
    finally:
        provider.cleanup(store)


@pytest.mark.parametrize("provider_cls", PROVIDERS, ids=PROVIDER_IDS)
def test_repo_persistence(tmp_path: Path, provider_cls: type[StoreProvider]):
    provider = provider_cls()
    store1 = provider.create(tmp_path)
    repo1 = make_repo(tmp_path, store1)
    try:
        (repo1.config.root / "db.json").write_bytes(b'{"host": "localhost"}')
        with repo1:
            repo1.init().unwrap()
            repo1.add("db.json").unwrap()
            committed = repo1.commit("db config").unwrap()
            repo1.branch("dev").unwrap()
    finally:
        provider.cleanup(store1)

    # Re-open the same location from scratch
    store2 = provider.create(tmp_path)
    repo2 = make_repo(tmp_path, store2)
    try:
        with repo2:
            head = repo2.graph.head()
            assert head is not None and head.id == committed.id
            assert repo2.graph.branches() == {"main": committed.id, "dev": committed.id}
            content_hash = head.snapshot["db.json"]
            assert repo2.store.get(content_hash).unwrap() == b'{"host": "localhost"}'
            assert repo2.store.refcount(content_hash) == 1
    finally:
        provider.cleanup(store2)


@pytest.mark.parametrize("provider_cls", PROVIDERS, ids=PROVIDER_IDS)
def test_repo_failed_block_is_rolled_back(
    tmp_path: Path, provider_cls: type[StoreProvider]
):
    provider = provider_cls()
    store = provider.create(tmp_path)
    repo = make_repo(tmp_path, store)
    try:
        with repo:
            repo.init().unwrap()

        with pytest.raises(RuntimeError):
            with repo:
                repo.branch("doomed").unwrap()
                raise RuntimeError("boom")

        with repo:
            assert "doomed" not in repo.graph.branches()
            assert repo.branch("doomed").error is None
    finally:
        provider.cleanup(store)


@pytest.mark.parametrize("provider_cls", PROVIDERS, ids=PROVIDER_IDS)
def test_unreadable_structure_loads_empty_default(
    tmp_path: Path, provider_cls: type[StoreProvider]
):
    provider = provider_cls()
    store = provider.create(tmp_path)
    repo = make_repo(tmp_path, store)
    try:
        (repo.config.root / "a.txt").write_bytes(b"a")
        with repo:
            repo.init().unwrap()
            repo.add("a.txt").unwrap()

        provider.corrupt(store, "commit_graph", "{not json")

        with repo:
            assert repo.graph.is_empty(), "Broken graph should load as empty"
            assert repo.stage.count() == 1, "Other structures are unaffected"
            assert repo.add("missing.txt").error is ErrorKind.NOT_FOUND
    finally:
        provider.cleanup(store)

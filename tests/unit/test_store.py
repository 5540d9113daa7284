"""Tests for wtenv worktree record stores."""

import json
from pathlib import Path

import pytest

from tests.conftest import WORKTREE_ID
from wtenv.constants import EnvironmentStatus, HealthStatus
from wtenv.exceptions import StoreError, WorktreeNotFoundError
from wtenv.store import InMemoryWorktreeStore, JsonWorktreeStore, WorktreeStore
from wtenv.types import AccessUrl, EnvironmentInstance, HealthCheck


class TestInMemoryStore:
    """Tests for InMemoryWorktreeStore."""

    def test_satisfies_protocol(self) -> None:
        assert isinstance(InMemoryWorktreeStore(), WorktreeStore)

    @pytest.mark.asyncio
    async def test_get_missing_raises(self) -> None:
        with pytest.raises(WorktreeNotFoundError, match="not found"):
            await InMemoryWorktreeStore().get("nope")

    @pytest.mark.asyncio
    async def test_records_are_copied(self, make_record) -> None:
        record = make_record()
        store = InMemoryWorktreeStore([record])

        record.environment_instance.status = EnvironmentStatus.RUNNING
        fetched = await store.get(WORKTREE_ID)
        fetched.name = "changed"

        again = await store.get(WORKTREE_ID)
        assert again.status is EnvironmentStatus.STOPPED
        assert again.name == "feature-auth"

    @pytest.mark.asyncio
    async def test_patch_environment_instance(self, make_record) -> None:
        store = InMemoryWorktreeStore([make_record()])
        instance = EnvironmentInstance(
            status=EnvironmentStatus.RUNNING,
            last_health_check=HealthCheck(HealthStatus.HEALTHY, "HTTP 200"),
            access_urls=[AccessUrl("App", "http://localhost:5173")],
            pid=77,
        )

        updated = await store.patch(WORKTREE_ID, {"environment_instance": instance, "ssh_port": 2225})

        assert updated.environment_instance == instance
        assert updated.ssh_port == 2225
        assert (await store.get(WORKTREE_ID)).environment_instance == instance

    @pytest.mark.asyncio
    async def test_patch_rejects_unknown_fields(self, make_record) -> None:
        store = InMemoryWorktreeStore([make_record()])

        with pytest.raises(StoreError, match="Cannot patch"):
            await store.patch(WORKTREE_ID, {"path": "/elsewhere"})

    @pytest.mark.asyncio
    async def test_patch_missing_raises(self) -> None:
        with pytest.raises(WorktreeNotFoundError):
            await InMemoryWorktreeStore().patch("nope", {"name": "x"})

    @pytest.mark.asyncio
    async def test_list_all(self, make_record) -> None:
        store = InMemoryWorktreeStore([make_record(), make_record(worktree_id="other", unique_id=4)])

        ids = {r.worktree_id for r in await store.list_all()}

        assert ids == {WORKTREE_ID, "other"}


class TestJsonStore:
    """Tests for JsonWorktreeStore."""

    @pytest.fixture
    def json_store(self, tmp_path: Path) -> JsonWorktreeStore:
        return JsonWorktreeStore(tmp_path / ".wtenv" / "worktrees.json")

    def test_satisfies_protocol(self, json_store: JsonWorktreeStore) -> None:
        assert isinstance(json_store, WorktreeStore)

    def test_empty_store(self, json_store: JsonWorktreeStore) -> None:
        assert json_store.list_sync() == []

    def test_add_writes_versioned_file(self, json_store: JsonWorktreeStore, make_record) -> None:
        json_store.add(make_record())

        data = json.loads(json_store.path.read_text())
        assert data["version"] == 1
        stored = data["worktrees"][WORKTREE_ID]
        assert stored["environment_instance"]["status"] == "stopped"
        assert stored["environment"]["start_command"] == "docker compose up -d"

    @pytest.mark.asyncio
    async def test_round_trip(self, json_store: JsonWorktreeStore, make_record) -> None:
        record = make_record()
        json_store.add(record)

        fetched = await json_store.get(WORKTREE_ID)

        assert fetched == record

    @pytest.mark.asyncio
    async def test_patch_persists_and_keeps_backup(self, json_store: JsonWorktreeStore, make_record) -> None:
        json_store.add(make_record())

        await json_store.patch(
            WORKTREE_ID,
            {"environment_instance": EnvironmentInstance(status=EnvironmentStatus.STARTING, pid=321)},
        )

        reopened = JsonWorktreeStore(json_store.path)
        record = await reopened.get(WORKTREE_ID)
        assert record.status is EnvironmentStatus.STARTING
        assert record.environment_instance.pid == 321

        raw = json.loads(json_store.path.read_text())
        assert raw["worktrees"][WORKTREE_ID]["environment_instance"]["process"] == {"pid": 321}

        backup = json.loads(json_store.path.with_suffix(".json.bak").read_text())
        assert backup["worktrees"][WORKTREE_ID]["environment_instance"]["status"] == "stopped"

    @pytest.mark.asyncio
    async def test_patch_missing_raises(self, json_store: JsonWorktreeStore) -> None:
        with pytest.raises(WorktreeNotFoundError):
            await json_store.patch("nope", {"name": "x"})

    def test_corrupt_file_raises_store_error(self, json_store: JsonWorktreeStore) -> None:
        json_store.path.parent.mkdir(parents=True)
        json_store.path.write_text("{not json")

        with pytest.raises(StoreError, match="Failed to parse"):
            json_store.list_sync()

    def test_remove(self, json_store: JsonWorktreeStore, make_record) -> None:
        json_store.add(make_record())

        json_store.remove(WORKTREE_ID)

        assert json_store.list_sync() == []
        with pytest.raises(WorktreeNotFoundError):
            json_store.remove(WORKTREE_ID)

    def test_no_temp_files_left(self, json_store: JsonWorktreeStore, make_record) -> None:
        json_store.add(make_record())
        json_store.add(make_record(worktree_id="other", unique_id=4))

        assert not list(json_store.path.parent.glob("worktrees_*.tmp"))


class TestResolveId:
    """Tests for JsonWorktreeStore.resolve_id."""

    @pytest.fixture
    def json_store(self, tmp_path: Path, make_record) -> JsonWorktreeStore:
        store = JsonWorktreeStore(tmp_path / "worktrees.json")
        store.add(make_record())
        store.add(make_record(worktree_id="0192ffff-0000-0000-0000-000000000000", unique_id=4))
        return store

    def test_full_id(self, json_store: JsonWorktreeStore) -> None:
        assert json_store.resolve_id(WORKTREE_ID) == WORKTREE_ID

    def test_unique_prefix(self, json_store: JsonWorktreeStore) -> None:
        assert json_store.resolve_id("0192ab") == WORKTREE_ID

    def test_ambiguous_prefix(self, json_store: JsonWorktreeStore) -> None:
        with pytest.raises(StoreError, match="Ambiguous") as exc_info:
            json_store.resolve_id("0192")

        assert len(exc_info.value.details["matches"]) == 2

    def test_unknown_prefix(self, json_store: JsonWorktreeStore) -> None:
        with pytest.raises(WorktreeNotFoundError):
            json_store.resolve_id("zzz")

    def test_name_lookup(self, tmp_path: Path, make_record) -> None:
        store = JsonWorktreeStore(tmp_path / "worktrees.json")
        store.add(make_record())

        assert store.resolve_id("feature-auth") == WORKTREE_ID

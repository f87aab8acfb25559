import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from cbim.exceptions import InvalidDefinitionError, StoreError, ValidationError
from cbim.feature_versions import Version
from cbim.plan.mutations import CreateIndexMutation, UpdateIndexMutation
from cbim.store.base import CouchbaseIndex
from cbim.sync import Sync, SyncOptions
from cbim.validator import VALIDATE_INDEX_NAME, Validator


def make_store(indexes=None, version=Version(7, 0)):
    store = MagicMock()
    store.bucket_name = "travel"
    store.is_secure = False
    store.get_indexes = AsyncMock(return_value=indexes or [])
    store.get_cluster_version = AsyncMock(return_value=version)
    store.get_query_plan = AsyncMock(side_effect=lambda statement: {"keys": [{"expr": "`type`"}]})
    store.create_index = AsyncMock()
    store.drop_index = AsyncMock()
    store.build_deferred_indexes = AsyncMock(return_value=[])
    store.wait_for_index_build = AsyncMock(return_value=True)
    return store


def make_options(**kwargs):
    values = {"interactive": False, "build_delay": 0, "logger": logging.getLogger("test_sync")}
    values.update(kwargs)
    return SyncOptions(**values)


@pytest.fixture
def definitions(tmp_path):
    path = tmp_path / "indexes.yaml"
    path.write_text(
        "name: idx_new\nindex_key: [type]\n"
        "---\nname: idx_changed\nindex_key: [type]\n"
        "---\nname: idx_old\nlifecycle:\n  drop: true\n"
        "---\ntype: override\nname: idx_new\nnodes: [a]\n"
        "---\ntype: nodeMap\nmap:\n  a: a.example.com\n"
    )
    return str(path)


@pytest.fixture
def live_indexes():
    return [
        CouchbaseIndex(name="idx_changed", index_key=["`name`"]),
        CouchbaseIndex(name="idx_old", index_key=["`type`"]),
    ]


class TestSyncCreatePlan:
    @pytest.mark.asyncio
    async def test_create_plan(self, definitions, live_indexes):
        store = make_store(live_indexes)

        plan = await Sync(store, definitions, make_options()).create_plan()

        by_name = {mutation.name: mutation for mutation in plan.mutations}
        assert set(by_name) == {"idx_new", "idx_changed", "idx_old"}
        assert isinstance(by_name["idx_new"], CreateIndexMutation)
        assert by_name["idx_new"].with_clause["nodes"] == ["a.example.com:8091"]
        assert isinstance(by_name["idx_changed"], UpdateIndexMutation)
        # Only the two definitions which aren't dropped are normalized
        assert store.get_query_plan.await_count == 2

    @pytest.mark.asyncio
    async def test_safe_mode_skips_unsafe(self, definitions, live_indexes):
        store = make_store(live_indexes)

        plan = await Sync(store, definitions, make_options(safe=True)).create_plan()

        assert [mutation.name for mutation in plan.mutations] == ["idx_new"]

    @pytest.mark.asyncio
    async def test_multiple_primary(self, tmp_path):
        path = tmp_path / "indexes.yaml"
        path.write_text("name: p1\nis_primary: true\n---\nname: p2\nis_primary: true\n")

        with pytest.raises(ValidationError, match="Cannot define more than one primary index"):
            await Sync(make_store(), str(path), make_options()).create_plan()

    @pytest.mark.asyncio
    async def test_no_definitions(self, tmp_path, caplog):
        with caplog.at_level(logging.WARNING):
            plan = await Sync(make_store(), str(tmp_path), make_options()).create_plan()

        assert plan.is_empty()
        assert "No index definitions found" in caplog.text

    def test_stdin_disables_interactive(self):
        sync = Sync(make_store(), ["-"], SyncOptions(interactive=True))

        assert sync.options.interactive is False


class TestSyncExecute:
    @pytest.mark.asyncio
    async def test_execute(self, definitions, live_indexes):
        store = make_store(live_indexes)

        await Sync(store, definitions, make_options()).execute()

        assert store.create_index.await_count == 2
        store.drop_index.assert_any_await("idx_old", "_default", "_default")

    @pytest.mark.asyncio
    async def test_dry_run(self, definitions, live_indexes):
        store = make_store(live_indexes)

        await Sync(store, definitions, make_options(dry_run=True)).execute()

        store.create_index.assert_not_awaited()
        store.drop_index.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_confirm_declined(self, definitions, live_indexes, caplog):
        store = make_store(live_indexes)
        confirm = AsyncMock(return_value=False)

        with caplog.at_level(logging.INFO):
            await Sync(store, definitions, make_options(interactive=True, confirm_sync=confirm)).execute()

        confirm.assert_awaited_once_with("Execute index sync plan?")
        store.create_index.assert_not_awaited()
        assert "Cancelling due to user input..." in caplog.text

    @pytest.mark.asyncio
    async def test_confirm_accepted(self, definitions, live_indexes):
        store = make_store(live_indexes)
        confirm = AsyncMock(return_value=True)

        await Sync(store, definitions, make_options(interactive=True, confirm_sync=confirm)).execute()

        assert store.create_index.await_count == 2

    @pytest.mark.asyncio
    async def test_empty_plan_does_not_prompt(self, tmp_path):
        confirm = AsyncMock(return_value=True)

        await Sync(make_store(), str(tmp_path), make_options(interactive=True, confirm_sync=confirm)).execute()

        confirm.assert_not_awaited()


class TestValidator:
    @pytest.mark.asyncio
    async def test_without_store(self, definitions, caplog):
        with caplog.at_level(logging.INFO):
            await Validator(definitions).execute()

        assert "Definitions validated, no errors found." in caplog.text

    @pytest.mark.asyncio
    async def test_validate_syntax(self, definitions):
        store = make_store()

        await Validator(definitions).execute(store)

        statements = [c.args[0] for c in store.get_query_plan.await_args_list]
        assert len(statements) == 2
        assert all(f"`{VALIDATE_INDEX_NAME}`" in statement for statement in statements)

    @pytest.mark.asyncio
    async def test_validate_syntax_error(self, definitions):
        store = make_store()
        store.get_query_plan.side_effect = StoreError("syntax error")

        with pytest.raises(InvalidDefinitionError, match="syntax error"):
            await Validator(definitions).execute(store)

    @pytest.mark.asyncio
    async def test_invalid_file(self, tmp_path):
        path = tmp_path / "indexes.yaml"
        path.write_text("name: idx\nis_primary: true\nindex_key: [type]\n")

        with pytest.raises(ValidationError):
            await Validator(str(path)).execute()

"""
Unit tests for the retention manager.

Tests the RetentionManager class to ensure:
- Cutoff dates follow the rule retention unit
- Files still uploading or with unfinished works are never deleted
- Rule metadata is patched with the pre-deletion count and real deletions
- Per-element failures do not stop the batch
- A large backlog is drained over successive executions
- The lock signal stops the cycle between rules
"""
import pytest
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock, MagicMock, patch

from curator.core.errors import AbortError, ConfigurationError
from curator.schemas.retention import RetentionRule, RetentionUnit
from curator.services.lock_service import AbortSignal
from curator.services.query_adapter import build_connection
from curator.services.retention_manager import (
    RetentionManager,
    compute_before,
    is_element_deletable,
)

NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_rule(**overrides) -> RetentionRule:
    data = {
        "id": "rule-1",
        "name": "Purge old knowledge",
        "scope": "knowledge",
        "max_retention": 30,
        "retention_unit": "days",
        "filters": None,
    }
    data.update(overrides)
    return RetentionRule.model_validate(data)


def make_lock(aborted: bool = False) -> MagicMock:
    lock = MagicMock()
    lock.signal = AbortSignal()
    if aborted:
        lock.signal.abort("shutdown requested")
    lock.extend = AsyncMock()
    return lock


class FakeKnowledgeStore:
    """In-memory knowledge store answering the manager's reads and deletes."""

    def __init__(self, count: int, age_days: int = 90):
        updated_at = (datetime.now(timezone.utc) - timedelta(days=age_days)).isoformat()
        self.elements: List[Dict[str, Any]] = [
            {
                "id": f"report-{i}",
                "internal_id": f"report-{i}",
                "entity_type": "Report",
                "updated_at": updated_at,
            }
            for i in range(count)
        ]
        self.patches: List[Dict[str, Any]] = []
        self.failing_ids = set()

    async def paginate(self, principal, tables=None, filters=None, first=100, before=None, **kwargs):
        matching = [e for e in self.elements if datetime.fromisoformat(e["updated_at"]) < before]
        return build_connection([dict(e) for e in matching[:first]], 0, len(matching))

    async def delete_element_by_internal_id(self, actor, element_id, entity_type):
        if element_id in self.failing_ids:
            raise RuntimeError(f"cannot delete {element_id}")
        self.elements = [e for e in self.elements if e["internal_id"] != element_id]

    async def patch_attribute(self, actor, element_id, entity_type, patch):
        self.patches.append({"id": element_id, "entity_type": entity_type, **patch})
        return patch


@pytest.fixture
def fake_store():
    store = FakeKnowledgeStore(count=150)
    with patch("curator.services.retention_manager.query_adapter") as mock_adapter, \
            patch("curator.services.retention_manager.db_service") as mock_db:
        mock_adapter.paginate = AsyncMock(side_effect=store.paginate)
        mock_db.delete_element_by_internal_id = AsyncMock(side_effect=store.delete_element_by_internal_id)
        mock_db.patch_attribute = AsyncMock(side_effect=store.patch_attribute)
        yield store


class TestComputeBefore:

    def test_days(self):
        assert compute_before(30, RetentionUnit.DAYS, NOW) == NOW - timedelta(days=30)

    def test_months_are_calendar_months(self):
        assert compute_before(1, RetentionUnit.MONTHS, NOW) == datetime(2024, 5, 15, 12, 0, 0, tzinfo=timezone.utc)

    def test_missing_unit_defaults_to_days(self):
        assert compute_before(2, None, NOW) == NOW - timedelta(days=2)


class TestIsElementDeletable:

    def test_complete_file_with_complete_works(self):
        node = {"uploadStatus": "complete", "works": [{"id": "w1", "status": "complete"}]}
        assert is_element_deletable(node) is True

    def test_file_still_uploading(self):
        assert is_element_deletable({"uploadStatus": "progress", "works": []}) is False

    def test_file_with_running_work(self):
        node = {
            "uploadStatus": "complete",
            "works": [{"id": "w1", "status": "complete"}, {"id": "w2", "status": "progress"}],
        }
        assert is_element_deletable(node) is False

    def test_knowledge_node_without_upload_status(self):
        assert is_element_deletable({"id": "report-1", "entity_type": "Report"}) is True


class TestGetElementsToDelete:

    @pytest.mark.asyncio
    async def test_unknown_scope_raises_configuration_error(self):
        manager = RetentionManager(batch_size=10)

        with pytest.raises(ConfigurationError) as exc_info:
            await manager.get_elements_to_delete("dashboard", NOW)

        assert "dashboard" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_file_scope_drops_protected_files(self):
        """
        GIVEN three old files, one still uploading and one with a running work
        WHEN candidates are fetched for the file scope
        THEN only the completed file is returned, global count unchanged
        """
        nodes = [
            {"id": "import/global/a.json", "uploadStatus": "complete", "works": []},
            {"id": "import/global/b.json", "uploadStatus": "progress", "works": []},
            {"id": "import/global/c.json", "uploadStatus": "complete", "works": [{"id": "w", "status": "wait"}]},
        ]
        manager = RetentionManager(batch_size=10)

        with patch(
            "curator.services.retention_manager.paginated_for_path_with_enrichment",
            new=AsyncMock(return_value=build_connection(nodes, 0, 3)),
        ) as mock_listing:
            result = await manager.get_elements_to_delete("file", NOW)

        assert [e.node["id"] for e in result.edges] == ["import/global/a.json"]
        assert result.page_info.global_count == 3
        assert mock_listing.await_args.args[1] == "import/global"
        assert mock_listing.await_args.kwargs["not_modified_since"] == NOW

    @pytest.mark.asyncio
    async def test_workbench_scope_keeps_every_candidate(self):
        nodes = [{"id": "import/pending/a.json", "uploadStatus": "progress", "works": []}]
        manager = RetentionManager(batch_size=10)

        with patch(
            "curator.services.retention_manager.paginated_for_path_with_enrichment",
            new=AsyncMock(return_value=build_connection(nodes, 0, 1)),
        ) as mock_listing:
            result = await manager.get_elements_to_delete("workbench", NOW)

        assert len(result.edges) == 1
        assert mock_listing.await_args.args[1] == "import/pending"

    @pytest.mark.asyncio
    async def test_knowledge_scope_passes_filters_and_cutoff(self):
        manager = RetentionManager(batch_size=25)
        filters = '{"mode": "and", "filters": [{"key": "entity_type", "values": ["Report"]}], "filterGroups": []}'

        with patch("curator.services.retention_manager.query_adapter") as mock_adapter:
            mock_adapter.paginate = AsyncMock(return_value=build_connection([], 0, 0))
            await manager.get_elements_to_delete("knowledge", NOW, filters)

        kwargs = mock_adapter.paginate.await_args.kwargs
        assert kwargs["first"] == 25
        assert kwargs["before"] == NOW
        assert kwargs["filters"].values_of("entity_type") == ["Report"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("statuses,kept", [
        ([], True),
        (["complete"], True),
        (["complete", "complete"], True),
        (["progress"], False),
        (["wait"], False),
        (["complete", "progress"], False),
        (["wait", "complete", "complete"], False),
        ([None], False),
    ])
    async def test_knowledge_scope_drops_elements_with_unfinished_works(self, statuses, kept):
        nodes = [
            {"id": "report-target", "entity_type": "Report",
             "works": [{"id": f"w{i}", "status": s} for i, s in enumerate(statuses)]},
            {"id": "report-idle", "entity_type": "Report", "works": []},
            {"id": "report-running", "entity_type": "Report", "works": [{"id": "wr", "status": "progress"}]},
        ]
        manager = RetentionManager(batch_size=10)

        with patch("curator.services.retention_manager.query_adapter") as mock_adapter:
            mock_adapter.paginate = AsyncMock(return_value=build_connection(nodes, 0, 3))
            result = await manager.get_elements_to_delete("knowledge", NOW)

        ids = [e.node["id"] for e in result.edges]
        assert ids == (["report-target", "report-idle"] if kept else ["report-idle"])
        assert result.page_info.global_count == 3


class TestExecuteRule:

    @pytest.mark.asyncio
    async def test_backlog_drained_over_successive_executions(self, fake_store):
        """
        GIVEN 150 expired reports and a batch size of 100
        WHEN the rule is executed three times
        THEN it deletes 100, then 50, then nothing, and remaining_count
        reports the backlog seen before each deletion
        """
        manager = RetentionManager(batch_size=100)
        rule = make_rule()

        first = await manager.execute_rule(rule)
        second = await manager.execute_rule(rule)
        third = await manager.execute_rule(rule)

        assert (first.remaining_count, first.deleted_count) == (150, 100)
        assert (second.remaining_count, second.deleted_count) == (50, 50)
        assert (third.remaining_count, third.deleted_count) == (0, 0)
        assert fake_store.elements == []
        assert [p["last_deleted_count"] for p in fake_store.patches] == [100, 50, 0]
        assert [p["remaining_count"] for p in fake_store.patches] == [150, 50, 0]
        assert all(p["id"] == "rule-1" and p["entity_type"] == "RetentionRule" for p in fake_store.patches)

    @pytest.mark.asyncio
    async def test_recent_elements_are_kept(self, fake_store):
        manager = RetentionManager(batch_size=100)

        result = await manager.execute_rule(make_rule(max_retention=1, retention_unit="years"))

        assert result.deleted_count == 0
        assert len(fake_store.elements) == 150

    @pytest.mark.asyncio
    async def test_failed_deletions_are_recorded_and_not_counted(self, fake_store):
        fake_store.failing_ids = {"report-3", "report-7"}
        manager = RetentionManager(batch_size=10)

        result = await manager.execute_rule(make_rule())

        assert result.fetched_count == 10
        assert result.deleted_count == 8
        assert sorted(f.id for f in result.failures) == ["report-3", "report-7"]
        assert fake_store.patches[-1]["last_deleted_count"] == 8

    @pytest.mark.asyncio
    async def test_abort_mid_batch_still_patches_rule(self, fake_store):
        manager = RetentionManager(batch_size=10)
        lock = make_lock(aborted=True)

        result = await manager.execute_rule(make_rule(), lock)

        assert result.aborted is True
        assert result.deleted_count == 0
        assert len(fake_store.patches) == 1

    @pytest.mark.asyncio
    async def test_fetch_error_propagates_without_patch(self):
        manager = RetentionManager(batch_size=10)

        with patch("curator.services.retention_manager.query_adapter") as mock_adapter, \
                patch("curator.services.retention_manager.db_service") as mock_db:
            mock_adapter.paginate = AsyncMock(side_effect=RuntimeError("search engine unavailable"))
            mock_db.patch_attribute = AsyncMock()

            with pytest.raises(RuntimeError):
                await manager.execute_rule(make_rule())

        mock_db.patch_attribute.assert_not_called()

    @pytest.mark.asyncio
    async def test_file_rule_deletes_by_file_id(self):
        nodes = [{"id": "import/global/a.json", "internal_id": "import/global/a.json",
                  "uploadStatus": "complete", "works": []}]
        manager = RetentionManager(batch_size=10)

        with patch(
            "curator.services.retention_manager.paginated_for_path_with_enrichment",
            new=AsyncMock(return_value=build_connection(nodes, 0, 1)),
        ), patch("curator.services.retention_manager.delete_file", new=AsyncMock()) as mock_delete, \
                patch("curator.services.retention_manager.db_service") as mock_db:
            mock_db.patch_attribute = AsyncMock()
            result = await manager.execute_rule(make_rule(scope="file"))

        assert result.deleted_count == 1
        assert mock_delete.await_args.args[1] == "import/global/a.json"


class TestExecute:

    @pytest.mark.asyncio
    async def test_extends_lock_after_each_rule(self, fake_store):
        manager = RetentionManager(batch_size=10)
        lock = make_lock()

        results = await manager.execute([make_rule(id="r1"), make_rule(id="r2")], lock)

        assert [r.rule_id for r in results] == ["r1", "r2"]
        assert lock.extend.await_count == 2

    @pytest.mark.asyncio
    async def test_aborted_signal_stops_before_next_rule(self, fake_store):
        manager = RetentionManager(batch_size=10)
        lock = make_lock(aborted=True)

        with pytest.raises(AbortError):
            await manager.execute([make_rule(id="r1"), make_rule(id="r2")], lock)

        assert fake_store.patches == []
        assert len(fake_store.elements) == 150

    @pytest.mark.asyncio
    async def test_handler_executes_every_stored_rule(self, fake_store):
        manager = RetentionManager(batch_size=10)
        lock = make_lock()

        with patch("curator.services.retention_manager.retention_rule_service") as mock_rules:
            mock_rules.find_all = AsyncMock(return_value=[make_rule(id="r1"), make_rule(id="r2")])
            results = await manager.handler(lock)

        assert len(results) == 2
        assert len(fake_store.elements) == 130


class TestCheckRule:

    @pytest.mark.asyncio
    async def test_returns_global_count_without_deleting(self, fake_store):
        manager = RetentionManager(batch_size=10)

        count = await manager.check_rule("knowledge", 30, RetentionUnit.DAYS)

        assert count == 150
        assert len(fake_store.elements) == 150
        assert fake_store.patches == []

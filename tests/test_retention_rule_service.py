"""
Tests for the retention rule store and user action auditing.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock, patch

from curator.core.errors import UnsupportedError
from curator.schemas.retention import RetentionRuleCreate, RetentionRuleUpdate
from curator.services.audit_service import publish_user_action
from curator.services.retention_rule_service import retention_rule_service


@pytest.fixture
def mock_db():
    with patch("curator.services.retention_rule_service.db_service") as mock_db, \
            patch("curator.services.retention_rule_service.publish_user_action", new=AsyncMock()) as mock_audit:
        mock_db.index_internal_object = AsyncMock(side_effect=lambda record: record)
        mock_db.find_internal_objects = AsyncMock(return_value=[])
        mock_db.delete_internal_object = AsyncMock(return_value=True)
        mock_db.audit = mock_audit
        yield mock_db


class TestRetentionRuleService:

    @pytest.mark.asyncio
    async def test_create_rule(self, settings_principal, mock_db):
        data = RetentionRuleCreate(name="Old workbenches", scope="workbench", max_retention=2, retention_unit="weeks")

        created = await retention_rule_service.create_rule(settings_principal, data)

        assert created.scope == "workbench"
        assert created.remaining_count is None
        record = mock_db.index_internal_object.await_args.args[0]
        assert record["entity_type"] == "RetentionRule"
        assert record["retention_unit"] == "weeks"
        assert mock_db.audit.await_args.kwargs["event_access"] == "administration"

    @pytest.mark.asyncio
    async def test_create_rule_rejects_invalid_filters(self, settings_principal, mock_db):
        data = RetentionRuleCreate(name="Bad", max_retention=2, filters="{not json")

        with pytest.raises(UnsupportedError):
            await retention_rule_service.create_rule(settings_principal, data)

        mock_db.index_internal_object.assert_not_awaited()
        mock_db.audit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_update_only_sends_set_fields(self, settings_principal, mock_db):
        mock_db.patch_attribute = AsyncMock(return_value={
            "id": "rule-1", "name": "Old knowledge", "scope": "knowledge", "max_retention": 90,
        })

        updated = await retention_rule_service.update_rule(
            settings_principal, "rule-1", RetentionRuleUpdate(max_retention=90)
        )

        assert updated.max_retention == 90
        assert mock_db.patch_attribute.await_args.args[3] == {"max_retention": 90}

    @pytest.mark.asyncio
    async def test_find_all(self, mock_db):
        mock_db.find_internal_objects.return_value = [
            {"id": "r1", "name": "a", "scope": "file", "max_retention": 1, "retention_unit": "hours"},
        ]

        rules = await retention_rule_service.find_all()

        assert rules[0].retention_unit.value == "hours"
        mock_db.find_internal_objects.assert_awaited_once_with("RetentionRule")

    @pytest.mark.asyncio
    async def test_delete_missing_rule(self, settings_principal, mock_db):
        assert await retention_rule_service.delete_rule(settings_principal, "missing") is False
        mock_db.delete_internal_object.assert_not_awaited()


class TestPublishUserAction:

    @pytest.mark.asyncio
    async def test_stores_entry(self, editor_principal):
        response = MagicMock()
        response.data = [{"id": "log-1"}]

        with patch("curator.services.audit_service.db_service") as mock_db:
            mock_db.client.table.return_value.insert.return_value.execute.return_value = response
            entry = await publish_user_action(
                editor_principal, "mutation", "create", "extended", "creates `background task`"
            )

        assert entry == {"id": "log-1"}
        inserted = mock_db.client.table.return_value.insert.call_args.args[0]
        assert inserted["message"] == "Editor User creates `background task`"
        assert inserted["actor_id"] == editor_principal.id

    @pytest.mark.asyncio
    async def test_storage_failure_is_swallowed(self, editor_principal):
        with patch("curator.services.audit_service.db_service") as mock_db:
            mock_db.client.table.return_value.insert.return_value.execute.side_effect = Exception("timeout")
            entry = await publish_user_action(
                editor_principal, "mutation", "create", "extended", "creates `background task`"
            )

        assert entry is None

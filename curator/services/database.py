import logging
from supabase import create_client, Client
from curator.core.config import settings
from curator.schemas.principal import Principal
from typing import List, Dict, Any, Optional

logger = logging.getLogger(__name__)

INTERNAL_OBJECTS_TABLE = "internal_objects"
KNOWLEDGE_OBJECTS_TABLE = "knowledge_objects"
KNOWLEDGE_RELATIONSHIPS_TABLE = "knowledge_relationships"

# Tables searched when resolving an arbitrary id
READ_DATA_TABLES = [KNOWLEDGE_OBJECTS_TABLE, KNOWLEDGE_RELATIONSHIPS_TABLE, INTERNAL_OBJECTS_TABLE]
# Knowledge indices used by retention and query tasks
READ_KNOWLEDGE_TABLES = [KNOWLEDGE_OBJECTS_TABLE, KNOWLEDGE_RELATIONSHIPS_TABLE]


class DatabaseService:
    """Service for interacting with Supabase database"""

    def __init__(self):
        self._client: Optional[Client] = None

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = create_client(
                settings.SUPABASE_URL,
                settings.SUPABASE_SERVICE_KEY
            )
        return self._client

    @client.setter
    def client(self, value: Client) -> None:
        self._client = value

    # Resolution
    async def internal_load_by_id(self, principal: Principal, element_id: str) -> Optional[Dict[str, Any]]:
        """
        Resolve an id (internal or standard) across every data table.

        The id is only ever compared for equality, never interpolated into a
        PostgREST logic expression.
        """
        for table in READ_DATA_TABLES:
            for column in ("internal_id", "standard_id"):
                response = self.client.table(table).select("*").eq(column, element_id).limit(1).execute()
                if response.data:
                    return response.data[0]
        logger.debug(f"Element {element_id} not found for {principal.id}")
        return None

    async def store_load_by_id(
        self,
        principal: Principal,
        element_id: str,
        entity_type: str
    ) -> Optional[Dict[str, Any]]:
        """Resolve an id, only returning the element if it has the expected type."""
        element = await self.internal_load_by_id(principal, element_id)
        if element is None:
            return None
        if element.get("entity_type") != entity_type and entity_type not in (element.get("parent_types") or []):
            return None
        return element

    async def find_internal_objects(
        self,
        entity_type: str,
        filters: Optional[Dict[str, Any]] = None,
        limit: Optional[int] = None,
        offset: int = 0
    ) -> List[Dict[str, Any]]:
        query = self.client.table(INTERNAL_OBJECTS_TABLE).select("*").eq("entity_type", entity_type)
        for key, value in (filters or {}).items():
            query = query.eq(key, value)
        query = query.order("created_at", desc=True)
        if limit is not None:
            query = query.range(offset, offset + limit - 1)
        response = query.execute()
        return response.data or []

    # Writes
    async def index_internal_object(self, element: Dict[str, Any]) -> Dict[str, Any]:
        """Insert an internal object (background task, retention rule...)."""
        response = self.client.table(INTERNAL_OBJECTS_TABLE).insert(element).execute()
        return response.data[0] if response.data else element

    async def patch_attribute(
        self,
        actor: Principal,
        element_id: str,
        entity_type: str,
        patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        """Apply a partial update to an internal object."""
        response = self.client.table(INTERNAL_OBJECTS_TABLE).update(patch).eq(
            "internal_id", element_id
        ).eq("entity_type", entity_type).execute()
        if not response.data:
            raise ValueError(f"{entity_type} {element_id} not found")
        logger.debug(f"{actor.name} patched {entity_type} {element_id}: {list(patch.keys())}")
        return response.data[0]

    async def compare_and_patch(
        self,
        actor: Principal,
        element_id: str,
        entity_type: str,
        expected: Dict[str, Any],
        patch: Dict[str, Any]
    ) -> Optional[Dict[str, Any]]:
        """
        Patch an internal object only if its current values match ``expected``.

        Returns None when another writer changed the row first.
        """
        query = self.client.table(INTERNAL_OBJECTS_TABLE).update(patch).eq(
            "internal_id", element_id
        ).eq("entity_type", entity_type)
        for key, value in expected.items():
            query = query.is_(key, "null") if value is None else query.eq(key, value)
        response = query.execute()
        if not response.data:
            return None
        logger.debug(f"{actor.name} patched {entity_type} {element_id}: {list(patch.keys())}")
        return response.data[0]

    async def delete_internal_object(self, element_id: str, entity_type: str) -> bool:
        self.client.table(INTERNAL_OBJECTS_TABLE).delete().eq(
            "internal_id", element_id
        ).eq("entity_type", entity_type).execute()
        return True

    async def delete_element_by_internal_id(
        self,
        actor: Principal,
        element_id: str,
        entity_type: Optional[str]
    ) -> None:
        """Permanently delete a knowledge element and the relationships attached to it."""
        for column in ("from_id", "to_id"):
            self.client.table(KNOWLEDGE_RELATIONSHIPS_TABLE).delete().eq(column, element_id).execute()
        table = KNOWLEDGE_RELATIONSHIPS_TABLE if _is_relationship(entity_type) else KNOWLEDGE_OBJECTS_TABLE
        self.client.table(table).delete().eq("internal_id", element_id).execute()
        logger.debug(f"{actor.name} deleted {entity_type} {element_id}")

    # Users
    async def get_user_by_auth0_id(self, auth0_id: str) -> Optional[Dict[str, Any]]:
        response = self.client.table("users").select("*").eq("auth0_id", auth0_id).execute()
        return response.data[0] if response.data else None


def _is_relationship(entity_type: Optional[str]) -> bool:
    # Relationship types are lower case by convention (related-to, uses...)
    return bool(entity_type) and entity_type[0].islower()


db_service = DatabaseService()

"""
File storage access for imported files and pending workbenches.

Objects live in a Supabase storage bucket; their metadata (path, upload
status, last modification) is mirrored in the ``files`` table and the
import works attached to a file in the ``works`` table.
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from curator.core.config import settings
from curator.schemas.principal import Principal
from curator.services.database import db_service
from curator.services.query_adapter import Connection, build_connection, decode_cursor

logger = logging.getLogger(__name__)

FILES_TABLE = "files"
WORKS_TABLE = "works"

IMPORT_GLOBAL_PATH = "import/global"
IMPORT_PENDING_PATH = "import/pending"


async def paginated_for_path_with_enrichment(
    principal: Principal,
    path: str,
    first: int = 100,
    after: Optional[str] = None,
    not_modified_since: Optional[datetime] = None,
) -> Connection:
    """
    List the files stored under ``path``, enriched with their import works.

    Every node carries ``id``, ``name``, ``updated_at``, ``uploadStatus`` and
    ``works`` (list of ``{id, status}``).
    """
    offset = decode_cursor(after)
    query = db_service.client.table(FILES_TABLE).select("*", count="exact").like("id", f"{path}/%")
    if not_modified_since is not None:
        query = query.lt("last_modified", not_modified_since.isoformat())
    response = query.order("last_modified").range(offset, offset + first - 1).execute()
    files = response.data or []

    works_by_file: Dict[str, List[Dict[str, Any]]] = {}
    if files:
        works_response = db_service.client.table(WORKS_TABLE).select("id, file_id, status").in_(
            "file_id", [f["id"] for f in files]
        ).execute()
        for work in works_response.data or []:
            works_by_file.setdefault(work["file_id"], []).append(
                {"id": work["id"], "status": work.get("status")}
            )

    nodes = [
        {
            "id": f["id"],
            "internal_id": f["id"],
            "name": f.get("name"),
            "entity_type": "InternalFile",
            "updated_at": f.get("last_modified"),
            "uploadStatus": f.get("upload_status"),
            "works": works_by_file.get(f["id"], []),
        }
        for f in files
    ]
    logger.debug(f"Listed {len(nodes)} files under {path} for {principal.name}")
    return build_connection(nodes, offset, response.count or 0)


async def delete_file(principal: Principal, file_id: str) -> None:
    """Remove a stored file and its metadata."""
    db_service.client.storage.from_(settings.FILE_STORAGE_BUCKET).remove([file_id])
    db_service.client.table(FILES_TABLE).delete().eq("id", file_id).execute()
    logger.debug(f"{principal.name} deleted file {file_id}")

"""
Table mapping sync.

Pulls the base schema and records, for every table, its external id, its
display name and the normalized name records are cached under. Renaming a
table in Airtable therefore moves it to a new normalized name on the next
sync while webhooks keep resolving by id.
"""

from typing import Any

from aircache.core.types import TableMapping
from aircache.source.client import Source
from aircache.storage.base import RecordStore
from aircache.utils.logging import get_logger
from aircache.utils.naming import normalize_key

logger = get_logger("aircache.source.mapping")


def mapping_from_schema(table: dict[str, Any]) -> TableMapping:
    """Build a mapping from one entry of the meta API ``tables`` list."""
    name = table.get("name") or table["id"]
    return TableMapping(
        external_id=table["id"],
        display_name=name,
        normalized_name=normalize_key(name) or normalize_key(table["id"]),
        primary_field_id=table.get("primaryFieldId"),
        fields={
            field["id"]: {"name": field.get("name"), "type": field.get("type")}
            for field in table.get("fields") or []
            if "id" in field
        },
    )


async def sync_table_mappings(source: Source, store: RecordStore) -> list[TableMapping]:
    """
    Fetch the base schema, upsert every table mapping and drop the mappings
    of tables the base no longer has.

    Raises whatever the source raises; callers decide whether a failed sync
    is fatal (the refresh pipeline keeps the previous mappings).
    """
    tables = await source.list_tables()
    mappings = []
    seen: dict[str, str] = {}
    for table in tables:
        mapping = mapping_from_schema(table)
        if mapping.normalized_name in seen:
            logger.warning(
                f"Tables '{seen[mapping.normalized_name]}' and '{mapping.display_name}' both normalize to "
                f"'{mapping.normalized_name}'; records will share one cache table"
            )
        seen[mapping.normalized_name] = mapping.display_name
        await store.upsert_table_mapping(mapping)
        mappings.append(mapping)

    current = {m.external_id for m in mappings}
    for stale in await store.list_tables():
        if stale.external_id not in current:
            await store.delete_table_mapping(stale.external_id)
            logger.info(f"Table '{stale.display_name}' ({stale.external_id}) is gone from the base, mapping removed")
    logger.info(f"Synced {len(mappings)} table mappings")
    return mappings

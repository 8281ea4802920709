"""Remote source access: API client and table mapping sync."""

from aircache.source.client import AirtableClient, Source
from aircache.source.mapping import sync_table_mappings

__all__ = ["AirtableClient", "Source", "sync_table_mappings"]

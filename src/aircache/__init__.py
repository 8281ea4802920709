"""
Aircache - a local, fast-read mirror of Airtable bases.

Keeps two complete copies of the cached data (slots A and B), rebuilds the
inactive one during a full refresh and publishes it with a single pointer
flip. Webhook notifications are applied incrementally to the live slot.
"""

__version__ = "0.1.0"

from aircache.exceptions import AircacheError

__all__ = ["AircacheError", "__version__"]

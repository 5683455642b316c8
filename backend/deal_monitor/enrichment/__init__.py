"""Owner enrichment for extracted deals."""

from deal_monitor.enrichment.owner_lookup import (
    OwnerLookup,
    OwnerLookupClient,
    OwnerLookupError,
    format_full_address,
)

__all__ = [
    "OwnerLookup",
    "OwnerLookupClient",
    "OwnerLookupError",
    "format_full_address",
]

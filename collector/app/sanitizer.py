"""Strip client-controlled fields and force server-side ownership."""
from __future__ import annotations

from typing import Any, Dict

# Not columns, or superseded by resolved values.
STRIPPED_FIELDS = frozenset(
    {
        "table",
        "site_id",
        "siteId",
        "user_id",
        "userId",
        "owner_id",
        "ownerId",
    }
)


def sanitize_event(fields: Dict[str, Any], site_id: str, owner_id: str, content_type: str) -> Dict[str, Any]:
    """Return a copy of ``fields`` that is safe to persist.

    Nested objects (join-shaped hints such as an embedded ``site``) are
    dropped along with the fields in ``STRIPPED_FIELDS``; the resolved site
    and the configured owner always overwrite whatever the client sent.
    """

    clean = {
        key: value
        for key, value in fields.items()
        if key not in STRIPPED_FIELDS and not isinstance(value, dict)
    }
    clean["site_id"] = site_id
    clean["user_id"] = owner_id
    clean["content_type"] = content_type
    return clean

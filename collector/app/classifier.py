"""Content-type labels for events."""
from __future__ import annotations

from typing import Dict, Iterable, Optional, Protocol, Tuple
from urllib.parse import urlparse

from .normalizer import EventTable, NormalizedEvent

DEFAULT_CONTENT_TYPE = "article"
SALES_PAGE = "sales_page"
COMMERCE_TABLES = frozenset({EventTable.INITIATE_CHECKOUTS, EventTable.PURCHASES})


class PageRuleDirectory(Protocol):
    def rules_for_sites(self, site_ids: Iterable[str]) -> Dict[Tuple[str, str], str]: ...


def normalize_path(value: Optional[str]) -> str:
    """Path component of a full URL or bare path, without a trailing slash."""

    if not isinstance(value, str) or not value.strip():
        return "/"
    value = value.strip()
    parsed = urlparse(value)
    if parsed.scheme and parsed.netloc:
        path = parsed.path
    elif value.startswith("//"):
        path = urlparse("http:" + value).path
    else:
        path = parsed.path
    if not path.startswith("/"):
        path = "/" + path
    if len(path) > 1:
        path = path.rstrip("/") or "/"
    return path


class ContentClassifier:
    def __init__(self, rules: Dict[Tuple[str, str], str]) -> None:
        self._rules = {(site_id, normalize_path(path)): label for (site_id, path), label in rules.items()}

    def classify(self, event: NormalizedEvent, site_id: str) -> str:
        default = event.fields.get("content_type") or DEFAULT_CONTENT_TYPE
        if event.table in COMMERCE_TABLES:
            return SALES_PAGE
        path = event.fields.get("url_path") or event.fields.get("url_full")
        return self._rules.get((site_id, normalize_path(path)), default)

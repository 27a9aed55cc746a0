"""Reduce the accepted request shapes to a uniform list of events."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import InvalidPayloadError, InvalidTableError

logger = logging.getLogger(__name__)


class EventTable(str, Enum):
    PAGEVIEWS = "pageviews"
    INITIATE_CHECKOUTS = "initiate_checkouts"
    PURCHASES = "purchases"


ALLOWED_TABLES = frozenset(table.value for table in EventTable)

# External (camelCase or generic) names -> column names. Originals are kept.
FIELD_ALIASES: Dict[str, str] = {
    "siteId": "site_id",
    "visitorId": "visitor_id",
    "sessionId": "session_id",
    "userId": "user_id",
    "screenWidth": "screen_width",
    "screenHeight": "screen_height",
    "viewportWidth": "viewport_width",
    "viewportHeight": "viewport_height",
    "deviceType": "device_type",
    "client_user_agent": "user_agent",
    "content_name": "product_name",
    "content_category": "product_category",
    "title": "page_title",
    "value": "price_value",
    "currency": "price_currency",
    "url": "url_full",
    "path": "url_path",
    "referrer": "referrer_url",
}

EVENT_TYPE_FIELDS = ("eventType", "event_type")

# Upper-cased event type with separators removed -> table.
EVENT_TYPE_TABLES: Dict[str, EventTable] = {
    "PURCHASE": EventTable.PURCHASES,
    "INITIATECHECKOUT": EventTable.INITIATE_CHECKOUTS,
    "CHECKOUT": EventTable.INITIATE_CHECKOUTS,
    "PAGEVIEW": EventTable.PAGEVIEWS,
    "VIEW": EventTable.PAGEVIEWS,
}


class PayloadShape(str, Enum):
    BATCH = "batch"
    WRAPPED_SINGLE = "wrapped_single"
    BARE_EVENT = "bare_event"
    BARE_LIST = "bare_list"


@dataclass
class NormalizedEvent:
    table: EventTable
    fields: Dict[str, Any]
    raw: Dict[str, Any]


@dataclass
class NormalizedPayload:
    shape: PayloadShape
    events: List[NormalizedEvent] = field(default_factory=list)


def apply_aliases(event: Dict[str, Any]) -> Dict[str, Any]:
    """Copy aliased fields onto their column names, keeping the originals."""

    normalized = dict(event)
    for key, value in event.items():
        column = FIELD_ALIASES.get(key)
        if column is not None:
            normalized[column] = value

    content_ids = event.get("content_ids")
    if isinstance(content_ids, list) and content_ids:
        normalized["product_id"] = content_ids[0]
    return normalized


def strip_namespace(table: str) -> str:
    return table.rsplit(".", 1)[-1].strip()


def validate_table(table: Optional[str]) -> EventTable:
    if not isinstance(table, str) or not table:
        raise InvalidTableError(None)
    name = strip_namespace(table)
    if name not in ALLOWED_TABLES:
        raise InvalidTableError(name)
    return EventTable(name)


def infer_table(event: Dict[str, Any]) -> Optional[str]:
    for key in EVENT_TYPE_FIELDS:
        event_type = event.get(key)
        if isinstance(event_type, str) and event_type:
            compact = "".join(ch for ch in event_type.upper() if ch.isalnum())
            table = EVENT_TYPE_TABLES.get(compact)
            if table is not None:
                return table.value
    if event.get("transaction_id"):
        return EventTable.PURCHASES.value
    return None


def _has_table_indicator(event: Dict[str, Any]) -> bool:
    return bool(event.get("table")) or infer_table(event) is not None


def _as_event(item: Any) -> Dict[str, Any]:
    if not isinstance(item, dict):
        raise InvalidPayloadError("Invalid format: every event must be a JSON object")
    return item


Extractor = Callable[[Any], Tuple[Optional[str], List[Any]]]

# Tried in order; the first matching rule decides the shape.
SHAPE_RULES: List[Tuple[PayloadShape, Callable[[Any], bool], Extractor]] = [
    (
        PayloadShape.BATCH,
        lambda body: isinstance(body, dict) and isinstance(body.get("events"), list),
        lambda body: (body.get("table"), list(body["events"])),
    ),
    (
        PayloadShape.WRAPPED_SINGLE,
        lambda body: isinstance(body, dict) and isinstance(body.get("events"), dict),
        lambda body: (body.get("table"), [body["events"]]),
    ),
    (
        PayloadShape.BARE_EVENT,
        lambda body: isinstance(body, dict) and "events" not in body and _has_table_indicator(body),
        lambda body: (None, [body]),
    ),
    (
        PayloadShape.BARE_LIST,
        lambda body: isinstance(body, list),
        lambda body: (None, list(body)),
    ),
]


def detect_shape(body: Any) -> Tuple[PayloadShape, Extractor]:
    for shape, matches, extract in SHAPE_RULES:
        if matches(body):
            return shape, extract
    raise InvalidPayloadError("Invalid format: unrecognized payload shape")


def normalize_event(event: Dict[str, Any], envelope_table: Optional[str] = None) -> NormalizedEvent:
    """Alias one event and resolve its table.

    Table precedence: the event's own ``table``, then the envelope ``table``,
    then the event type, then the presence of a transaction id.
    """

    event = _as_event(event)
    fields = apply_aliases(event)
    explicit = fields.pop("table", None)
    table = validate_table(explicit or envelope_table or infer_table(fields))
    return NormalizedEvent(table=table, fields=fields, raw=dict(event))


def extract_events(body: Any) -> Tuple[PayloadShape, Optional[str], List[Any]]:
    """Detect the shape and return it with the envelope table and raw events."""

    shape, extract = detect_shape(body)
    envelope_table, events = extract(body)
    return shape, envelope_table, events


def normalize_payload(body: Any) -> NormalizedPayload:
    shape, envelope_table, events = extract_events(body)
    normalized = [normalize_event(event, envelope_table) for event in events]
    logger.debug("Normalized %d event(s) from %s payload", len(normalized), shape.value)
    return NormalizedPayload(shape=shape, events=normalized)

"""Request-scoped ingestion: normalize, resolve, classify, sanitize, persist."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as RecordValidationError
from sqlalchemy.orm import Session

from .classifier import ContentClassifier
from .config import ProcessingMode, Settings
from .errors import IngestError, ValidationError
from .normalizer import EventTable, NormalizedEvent, extract_events, normalize_event
from .persistence import EventGateway, SqlPageRuleDirectory, SqlSiteDirectory
from .sanitizer import sanitize_event
from .schemas import RECORD_MODELS
from .sites import build_resolver

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    count: int = 0
    dropped: int = 0
    results: List[Dict[str, Any]] = field(default_factory=list)


def build_row(
    event: NormalizedEvent,
    site_id: str,
    owner_id: str,
    classifier: ContentClassifier,
) -> Dict[str, Any]:
    """Turn one resolved event into a typed row for its table."""

    content_type = classifier.classify(event, site_id)
    clean = sanitize_event(event.fields, site_id, owner_id, content_type)
    clean["raw_payload"] = event.raw
    try:
        record = RECORD_MODELS[event.table.value].model_validate(clean)
    except RecordValidationError as exc:
        first = exc.errors()[0]
        name = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid value for {name}: {first['msg']}", field=name) from exc
    return record.model_dump()


def _summary(table: EventTable, row: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "table": table.value,
        "id": row["id"],
        "site_id": row["site_id"],
        "content_type": row["content_type"],
    }


@dataclass
class _Outcome:
    item: Any
    event: Optional[NormalizedEvent] = None
    site_id: Optional[str] = None
    error: Optional[IngestError] = None

    def failure(self) -> Dict[str, Any]:
        table = self.event.table.value if self.event is not None else None
        event_id = self.item.get("id") if isinstance(self.item, dict) else None
        return {"table": table, "id": event_id, "error": self.error.message}


class IngestionPipeline:
    def __init__(self, settings: Settings, session: Session) -> None:
        self.settings = settings
        self.sites = SqlSiteDirectory(session)
        self.page_rules = SqlPageRuleDirectory(session)
        self.events = EventGateway(session)

    def ingest(self, body: Any) -> IngestResult:
        self.settings.require_ingestion()
        shape, envelope_table, items = extract_events(body)
        logger.debug("Received %d event(s) in a %s payload", len(items), shape.value)
        if self.settings.processing_mode is ProcessingMode.PER_EVENT:
            return self._ingest_per_event(items, envelope_table)
        events = [normalize_event(item, envelope_table) for item in items]
        return self._ingest_batch(events)

    def _resolver(self, events: List[NormalizedEvent]):
        return build_resolver(
            self.settings.resolution_policy,
            self.sites,
            self.settings.owner_user_id,
            events,
        )

    def _classifier(self, site_ids) -> ContentClassifier:
        return ContentClassifier(self.page_rules.rules_for_sites(site_ids))

    def _ingest_batch(self, events: List[NormalizedEvent]) -> IngestResult:
        result = IngestResult()
        resolver = self._resolver(events)
        resolved: List[Tuple[NormalizedEvent, str]] = []
        for event in events:
            site_id = resolver.resolve(event)
            if site_id is None:
                result.dropped += 1
                continue
            resolved.append((event, site_id))

        classifier = self._classifier(site_id for _, site_id in resolved)
        grouped: Dict[EventTable, List[Dict[str, Any]]] = {}
        for event, site_id in resolved:
            row = build_row(event, site_id, self.settings.owner_user_id, classifier)
            grouped.setdefault(event.table, []).append(row)

        for table, rows in grouped.items():
            written = self.events.upsert(table, rows)
            result.count += len(written)
            result.results.extend(_summary(table, row) for row in written)

        if result.dropped:
            logger.info("Dropped %d event(s) with no registered site", result.dropped)
        return result

    def _ingest_per_event(self, items: List[Any], envelope_table: Optional[str]) -> IngestResult:
        """Process events one at a time, reporting each outcome separately."""

        result = IngestResult()
        outcomes: List[_Outcome] = []
        for item in items:
            outcome = _Outcome(item)
            try:
                outcome.event = normalize_event(item, envelope_table)
            except ValidationError as exc:
                outcome.error = exc
            outcomes.append(outcome)

        resolver = self._resolver([outcome.event for outcome in outcomes if outcome.event is not None])
        for outcome in outcomes:
            if outcome.error is not None:
                continue
            try:
                outcome.site_id = resolver.resolve(outcome.event)
            except IngestError as exc:
                outcome.error = exc

        classifier = self._classifier(outcome.site_id for outcome in outcomes if outcome.site_id)
        for outcome in outcomes:
            if outcome.error is None and outcome.site_id is None:
                result.dropped += 1
                continue
            if outcome.error is None:
                try:
                    row = build_row(outcome.event, outcome.site_id, self.settings.owner_user_id, classifier)
                    self.events.upsert(outcome.event.table, [row])
                except IngestError as exc:
                    outcome.error = exc
            if outcome.error is not None:
                logger.warning("Event rejected: %s", outcome.error.message)
                result.results.append(outcome.failure())
                continue
            result.count += 1
            result.results.append(_summary(outcome.event.table, row))
        return result

"""Directory reads and idempotent upserts against the relational store."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import Table, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import PersistenceError
from .models import EVENT_MODELS, Site, SitePage
from .normalizer import EventTable
from .sites import SiteEntry

logger = logging.getLogger(__name__)

FOREIGN_KEY_VIOLATION = "23503"


def _error_message(exc: Exception) -> str:
    orig = getattr(exc, "orig", None)
    return str(orig if orig is not None else exc)


def is_foreign_key_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == FOREIGN_KEY_VIOLATION:
        return True
    return "foreign key" in _error_message(exc).lower()


def _dialect_insert(session: Session, table: Table):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(table)
    if dialect == "sqlite":
        return sqlite.insert(table)
    raise PersistenceError(f"Upsert is not supported on the {dialect} dialect")


def upsert_rows(session: Session, table: Table, rows: List[Dict[str, Any]]) -> None:
    """``INSERT ... ON CONFLICT (id) DO UPDATE`` for ``rows`` (same keys each)."""

    stmt = _dialect_insert(session, table).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=[table.c.id],
        set_={key: stmt.excluded[key] for key in rows[0] if key != "id"},
    )
    session.execute(stmt)


def _to_entry(site: Site) -> SiteEntry:
    return SiteEntry(
        id=site.id,
        user_id=site.user_id,
        name=site.name,
        url=site.url,
        tracking_domain=site.tracking_domain,
        associated_domains=list(site.associated_domains or []),
    )


class SqlSiteDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def sites_for_owner(self, owner_id: str) -> List[SiteEntry]:
        stmt = select(Site).where(Site.user_id == owner_id).order_by(Site.created_at, Site.id)
        return [_to_entry(site) for site in self.session.execute(stmt).scalars()]

    def sites_by_ids(self, site_ids: Iterable[str]) -> List[SiteEntry]:
        ids = list(site_ids)
        if not ids:
            return []
        stmt = select(Site).where(Site.id.in_(ids))
        return [_to_entry(site) for site in self.session.execute(stmt).scalars()]

    def register_site(self, site: SiteEntry) -> SiteEntry:
        try:
            self._upsert(site)
        except IntegrityError as exc:
            self.session.rollback()
            if site.user_id is None or not is_foreign_key_violation(exc):
                logger.error("Failed to register site %s: %s", site.id, _error_message(exc))
                raise PersistenceError(_error_message(exc)) from exc
            logger.warning(
                "Owner %s does not exist; registering site %s without an owner", site.user_id, site.id
            )
            site = replace(site, user_id=None)
            try:
                self._upsert(site)
            except SQLAlchemyError as retry_exc:
                self.session.rollback()
                logger.error("Failed to register orphan site %s: %s", site.id, _error_message(retry_exc))
                raise PersistenceError(_error_message(retry_exc)) from retry_exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error("Failed to register site %s: %s", site.id, _error_message(exc))
            raise PersistenceError(_error_message(exc)) from exc
        return site

    def _upsert(self, site: SiteEntry) -> None:
        row = {
            "id": site.id,
            "user_id": site.user_id,
            "name": site.name,
            "url": site.url,
        }
        upsert_rows(self.session, Site.__table__, [row])
        self.session.commit()


class SqlPageRuleDirectory:
    def __init__(self, session: Session) -> None:
        self.session = session

    def rules_for_sites(self, site_ids: Iterable[str]) -> Dict[Tuple[str, str], str]:
        ids = sorted(set(site_ids))
        if not ids:
            return {}
        stmt = select(SitePage).where(SitePage.site_id.in_(ids))
        return {(page.site_id, page.path): page.page_type for page in self.session.execute(stmt).scalars()}


def dedupe_by_id(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep the last row for each id, in first-seen order."""

    latest: Dict[str, Dict[str, Any]] = {}
    for row in rows:
        latest[row["id"]] = row
    return list(latest.values())


class EventGateway:
    def __init__(self, session: Session) -> None:
        self.session = session

    def upsert(self, table: EventTable, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Upsert ``rows`` into ``table`` keyed on id; returns the rows written."""

        rows = dedupe_by_id(rows)
        if not rows:
            return []
        model = EVENT_MODELS[table.value]
        try:
            upsert_rows(self.session, model.__table__, rows)
            self.session.commit()
        except (SQLAlchemyError, OverflowError, ValueError, TypeError) as exc:
            # Driver bind errors such as OverflowError are not wrapped by SQLAlchemy.
            self.session.rollback()
            logger.error("Upsert into %s failed: %s", table.value, _error_message(exc))
            raise PersistenceError(_error_message(exc)) from exc
        return rows


def check_connection(session: Session) -> Tuple[str, Optional[str]]:
    try:
        session.execute(select(Site.id).limit(1))
    except SQLAlchemyError as exc:
        return "FAILED", _error_message(exc)
    return "SUCCESS", None

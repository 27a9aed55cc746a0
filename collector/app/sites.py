"""Resolve every event to a site that exists in the site directory."""
from __future__ import annotations

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Protocol
from urllib.parse import urlparse

from .config import ResolutionPolicy
from .normalizer import NormalizedEvent

logger = logging.getLogger(__name__)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_WWW_RE = re.compile(r"^www\.", re.IGNORECASE)
_PATH_RE = re.compile(r"[/?#]")

SITE_NAME_HINTS = ("site_name", "siteName")


def normalize_domain(url: Optional[str]) -> str:
    """``https://www.Example.com/page`` -> ``example.com``."""

    if not isinstance(url, str):
        return ""
    clean = _SCHEME_RE.sub("", url.strip())
    clean = _WWW_RE.sub("", clean)
    return _PATH_RE.split(clean, 1)[0].lower()


def url_origin(url: Optional[str]) -> Optional[str]:
    if not isinstance(url, str) or not url:
        return None
    parsed = urlparse(url.strip())
    if not parsed.scheme or not parsed.netloc:
        return None
    return f"{parsed.scheme}://{parsed.netloc}"


@dataclass
class SiteEntry:
    id: str
    user_id: Optional[str]
    name: str
    url: str
    tracking_domain: Optional[str] = None
    associated_domains: List[str] = field(default_factory=list)

    def domains(self) -> List[str]:
        candidates = [self.url, self.tracking_domain, *(self.associated_domains or [])]
        seen: List[str] = []
        for candidate in candidates:
            domain = normalize_domain(candidate)
            if domain and domain not in seen:
                seen.append(domain)
        return seen


class SiteDirectory(Protocol):
    def sites_for_owner(self, owner_id: str) -> List[SiteEntry]: ...

    def sites_by_ids(self, site_ids: Iterable[str]) -> List[SiteEntry]: ...

    def register_site(self, site: SiteEntry) -> SiteEntry: ...


class SiteIndex:
    """Per-request snapshot of known sites keyed by id and by domain."""

    def __init__(self, sites: Iterable[SiteEntry] = ()) -> None:
        self._by_id: Dict[str, SiteEntry] = {}
        self._by_domain: Dict[str, str] = {}
        for site in sites:
            self.add(site)

    def add(self, site: SiteEntry, index_domains: bool = True) -> None:
        self._by_id[site.id] = site
        if not index_domains:
            return
        for domain in site.domains():
            # First registration of a domain keeps it.
            self._by_domain.setdefault(domain, site.id)

    def get(self, site_id: Optional[str]) -> Optional[SiteEntry]:
        if not site_id:
            return None
        return self._by_id.get(str(site_id))

    def match_domain(self, domain: str) -> Optional[str]:
        if not domain:
            return None
        exact = self._by_domain.get(domain)
        if exact is not None:
            return exact
        for known, site_id in self._by_domain.items():
            if domain.endswith("." + known):
                return site_id
        return None


def _event_site_id(event: NormalizedEvent) -> Optional[str]:
    site_id = event.fields.get("site_id")
    if site_id is None or site_id == "":
        return None
    return str(site_id)


def _event_url(event: NormalizedEvent) -> Optional[str]:
    url = event.fields.get("url_full")
    return url if isinstance(url, str) else None


def site_name_hint(event: NormalizedEvent) -> Optional[str]:
    nested = event.fields.get("site") or event.fields.get("sites")
    if isinstance(nested, dict) and nested.get("name"):
        return str(nested["name"])
    for key in SITE_NAME_HINTS:
        value = event.fields.get(key)
        if value:
            return str(value)
    return None


class StrictSiteResolver:
    """Only accept events whose domain belongs to a pre-registered site."""

    policy = ResolutionPolicy.STRICT

    def __init__(self, index: SiteIndex) -> None:
        self.index = index

    def resolve(self, event: NormalizedEvent) -> Optional[str]:
        domain = normalize_domain(_event_url(event))
        site_id = self.index.match_domain(domain)
        if site_id is None:
            logger.debug("Dropping %s event from unregistered domain %r", event.table.value, domain)
        return site_id


class AutoRegisterSiteResolver:
    """Trust known ids, match domains, and register a site for anything else."""

    policy = ResolutionPolicy.AUTO_REGISTER

    def __init__(self, index: SiteIndex, directory: SiteDirectory, owner_id: str) -> None:
        self.index = index
        self.directory = directory
        self.owner_id = owner_id

    def resolve(self, event: NormalizedEvent) -> Optional[str]:
        supplied_id = _event_site_id(event)
        if self.index.get(supplied_id) is not None:
            return supplied_id

        url = _event_url(event)
        domain = normalize_domain(url)
        matched = self.index.match_domain(domain)
        if matched is not None:
            return matched

        return self._register(event, supplied_id, url, domain).id

    def _register(
        self,
        event: NormalizedEvent,
        supplied_id: Optional[str],
        url: Optional[str],
        domain: str,
    ) -> SiteEntry:
        site_id = supplied_id or str(uuid.uuid4())
        name = site_name_hint(event) or (f"Site {domain}" if domain else f"Site {site_id[:8]}")
        site = SiteEntry(
            id=site_id,
            user_id=self.owner_id,
            name=name,
            url=url_origin(url) or f"https://{site_id}.unregistered.invalid",
        )
        registered = self.directory.register_site(site)
        logger.info("Auto-registered site %s (%s) for domain %r", registered.id, registered.name, domain)
        self.index.add(registered)
        return registered


def build_resolver(
    policy: ResolutionPolicy,
    directory: SiteDirectory,
    owner_id: str,
    events: Iterable[NormalizedEvent],
):
    """Read the directory snapshot once and return the resolver for ``policy``."""

    index = SiteIndex(directory.sites_for_owner(owner_id))
    if policy is ResolutionPolicy.STRICT:
        return StrictSiteResolver(index)

    unknown_ids = {
        site_id
        for site_id in (_event_site_id(event) for event in events)
        if site_id and index.get(site_id) is None
    }
    if unknown_ids:
        # Sites of other owners are reachable by id only, never by domain.
        for site in directory.sites_by_ids(sorted(unknown_ids)):
            index.add(site, index_domains=site.user_id == owner_id)
    return AutoRegisterSiteResolver(index, directory, owner_id)


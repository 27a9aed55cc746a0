"""Pydantic models for event rows and response bodies."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, field_validator


def _stringify(value: Any) -> Any:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    return value


Text = Annotated[Optional[str], BeforeValidator(_stringify)]

# Integer columns are 32-bit signed.
INT32_MAX = 2**31 - 1
Pixels = Annotated[Optional[int], Field(ge=0, le=INT32_MAX)]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class EventRecord(BaseModel):
    """Columns shared by every event table.

    Keys that are not columns are ignored; the untouched event is kept in
    ``raw_payload`` instead.
    """

    model_config = ConfigDict(extra="ignore")

    id: Annotated[str, BeforeValidator(_stringify)] = Field(default_factory=lambda: str(uuid.uuid4()))
    site_id: Annotated[str, BeforeValidator(_stringify)]
    user_id: Text = None
    timestamp: datetime = Field(default_factory=_utcnow)
    visitor_id: Text = None
    session_id: Text = None
    url_full: Text = None
    url_path: Text = None
    content_type: Text = None

    utm_source: Text = None
    utm_medium: Text = None
    utm_campaign: Text = None
    utm_content: Text = None
    utm_term: Text = None

    user_agent: Text = None
    client_ip_address: Text = None
    browser_name: Text = None
    os_name: Text = None
    device_type: Text = None

    fbc: Text = None
    fbp: Text = None
    gclid: Text = None

    raw_payload: Optional[Dict[str, Any]] = None

    @field_validator("id", mode="before")
    @classmethod
    def _generate_missing_id(cls, value: Any) -> Any:
        if value is None or value == "":
            return str(uuid.uuid4())
        return value

    @field_validator("timestamp", mode="before")
    @classmethod
    def _default_timestamp(cls, value: Any) -> Any:
        if value is None or value == "":
            return _utcnow()
        return value

    @field_validator("timestamp")
    @classmethod
    def _as_naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class PageviewRecord(EventRecord):
    page_title: Text = None
    referrer_url: Text = None
    utm_id: Text = None

    browser_version: Text = None
    os_version: Text = None

    city: Text = None
    region: Text = None
    country_code: Text = None
    language: Text = None

    screen_width: Pixels = None
    screen_height: Pixels = None
    viewport_width: Pixels = None
    viewport_height: Pixels = None
    page_load_time: Optional[float] = None

    fbclid: Text = None
    ttclid: Text = None
    epik: Text = None
    msclkid: Text = None
    meta_event_id: Text = None
    ga_client_id: Text = None
    ga_session_id: Text = None


class InitiateCheckoutRecord(EventRecord):
    product_name: Text = None
    product_id: Text = None
    product_category: Text = None
    price_value: Optional[float] = None
    price_currency: Text = None


class PurchaseRecord(EventRecord):
    transaction_id: Text = None
    product_name: Text = None
    product_id: Text = None
    product_category: Text = None
    price_value: Optional[float] = None
    price_currency: Text = None
    status: Text = None
    attribution_status: Text = None

    buyer_email: Text = None
    buyer_name: Text = None
    buyer_phone: Text = None
    buyer_address: Text = None


RECORD_MODELS = {
    "pageviews": PageviewRecord,
    "initiate_checkouts": InitiateCheckoutRecord,
    "purchases": PurchaseRecord,
}


class IngestResponse(BaseModel):
    success: bool = True
    count: int
    dropped: int = 0
    results: List[Dict[str, Any]] = Field(default_factory=list)


class ConnectionTest(BaseModel):
    status: str
    error: Optional[str] = None


class DiagnosticResponse(BaseModel):
    status: str = "diagnostic"
    env: Dict[str, str]
    resolution_policy: str
    processing_mode: str
    connection_test: ConnectionTest
    timestamp: datetime

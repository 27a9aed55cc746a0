"""SQLAlchemy models for sites, page rules and tracked events."""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, declared_attr

Base = declarative_base()


class Owner(Base):
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Site(Base):
    __tablename__ = "sites"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
    name = Column(String(255), nullable=False)
    url = Column(String(2048), nullable=False)
    tracking_domain = Column(String(255), nullable=True)
    associated_domains = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class SitePage(Base):
    __tablename__ = "site_pages"
    __table_args__ = (UniqueConstraint("site_id", "path", name="uq_site_pages_site_path"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(String(64), ForeignKey("sites.id"), nullable=False, index=True)
    path = Column(String(2048), nullable=False)
    page_type = Column(String(64), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class TrackedEventMixin:
    """Columns shared by every event table."""

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=True, index=True)
    timestamp = Column(DateTime, nullable=False, index=True)
    visitor_id = Column(String(255), nullable=True, index=True)
    session_id = Column(String(255), nullable=True)
    url_full = Column(Text, nullable=True)
    url_path = Column(Text, nullable=True)
    content_type = Column(String(64), nullable=True)

    utm_source = Column(String(255), nullable=True)
    utm_medium = Column(String(255), nullable=True)
    utm_campaign = Column(String(255), nullable=True)
    utm_content = Column(String(255), nullable=True)
    utm_term = Column(String(255), nullable=True)

    user_agent = Column(Text, nullable=True)
    client_ip_address = Column(String(64), nullable=True)
    browser_name = Column(String(64), nullable=True)
    os_name = Column(String(64), nullable=True)
    device_type = Column(String(32), nullable=True)

    fbc = Column(String(255), nullable=True)
    fbp = Column(String(255), nullable=True)
    gclid = Column(String(255), nullable=True)

    raw_payload = Column(JSON, nullable=True)
    received_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    @declared_attr
    def site_id(cls):
        return Column(String(64), ForeignKey("sites.id"), nullable=False, index=True)


class Pageview(TrackedEventMixin, Base):
    __tablename__ = "pageviews"

    page_title = Column(Text, nullable=True)
    referrer_url = Column(Text, nullable=True)
    utm_id = Column(String(255), nullable=True)

    browser_version = Column(String(64), nullable=True)
    os_version = Column(String(64), nullable=True)

    city = Column(String(128), nullable=True)
    region = Column(String(128), nullable=True)
    country_code = Column(String(8), nullable=True)
    language = Column(String(32), nullable=True)

    screen_width = Column(Integer, nullable=True)
    screen_height = Column(Integer, nullable=True)
    viewport_width = Column(Integer, nullable=True)
    viewport_height = Column(Integer, nullable=True)
    page_load_time = Column(Float, nullable=True)

    fbclid = Column(String(255), nullable=True)
    ttclid = Column(String(255), nullable=True)
    epik = Column(String(255), nullable=True)
    msclkid = Column(String(255), nullable=True)
    meta_event_id = Column(String(255), nullable=True)
    ga_client_id = Column(String(255), nullable=True)
    ga_session_id = Column(String(255), nullable=True)


class InitiateCheckout(TrackedEventMixin, Base):
    __tablename__ = "initiate_checkouts"

    product_name = Column(String(255), nullable=True)
    product_id = Column(String(255), nullable=True)
    product_category = Column(String(255), nullable=True)
    price_value = Column(Float, nullable=True)
    price_currency = Column(String(8), nullable=True)


class Purchase(TrackedEventMixin, Base):
    __tablename__ = "purchases"

    transaction_id = Column(String(255), nullable=True, index=True)
    product_name = Column(String(255), nullable=True)
    product_id = Column(String(255), nullable=True)
    product_category = Column(String(255), nullable=True)
    price_value = Column(Float, nullable=True)
    price_currency = Column(String(8), nullable=True)
    status = Column(String(64), nullable=True)
    attribution_status = Column(String(64), nullable=True)

    buyer_email = Column(String(255), nullable=True)
    buyer_name = Column(String(255), nullable=True)
    buyer_phone = Column(String(64), nullable=True)
    buyer_address = Column(Text, nullable=True)


EVENT_MODELS = {
    "pageviews": Pageview,
    "initiate_checkouts": InitiateCheckout,
    "purchases": Purchase,
}

from dataclasses import replace
from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select

from collector.app.config import ProcessingMode, ResolutionPolicy
from collector.app.errors import PersistenceError
from collector.app.main import INGEST_PATH, create_app
from collector.app.models import InitiateCheckout, Pageview, Purchase, Site
from collector.app.normalizer import EventTable
from collector.app.persistence import EventGateway

SECRET = "tracker-secret"
OWNER_ID = "owner-1"
AUTH = {"Authorization": f"Bearer {SECRET}"}


@pytest.fixture
def make_client(settings):
    def factory(**overrides):
        app = create_app(replace(settings, **overrides))
        return TestClient(app)

    return factory


@pytest.fixture
def client(make_client, seed):
    seed.owner()
    seed.site("site-1", "https://example.com")
    return make_client()


def _pageview(event_id, url="https://example.com/page", **extra):
    return {"id": event_id, "visitor_id": "visitor-1", "url": url, **extra}


def _count(session_factory, model):
    with session_factory() as db:
        return db.execute(select(func.count()).select_from(model)).scalar_one()


def _rows(session_factory, model):
    with session_factory() as db:
        return db.execute(select(model).order_by(model.id)).scalars().all()


def test_ingest_batch_persists_events(client, session_factory):
    response = client.post(
        INGEST_PATH,
        headers=AUTH,
        json={"table": "pageviews", "events": [_pageview("a"), _pageview("b")]},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 2
    assert {result["id"] for result in body["results"]} == {"a", "b"}
    assert [row.site_id for row in _rows(session_factory, Pageview)] == ["site-1", "site-1"]


def test_apikey_header_is_accepted(client):
    response = client.post(INGEST_PATH, headers={"apikey": SECRET}, json={"table": "pageviews", **_pageview("a")})

    assert response.status_code == 200
    assert response.json()["count"] == 1


def test_correct_bearer_and_wrong_apikey_is_accepted(client):
    headers = {**AUTH, "apikey": "not-the-secret"}
    response = client.post(INGEST_PATH, headers=headers, json={"table": "pageviews", **_pageview("a")})

    assert response.status_code == 200


def test_wrong_credentials_are_rejected(client, session_factory):
    headers = {"Authorization": "Bearer nope", "apikey": "nope"}
    response = client.post(INGEST_PATH, headers=headers, json={"table": "pageviews", **_pageview("a")})

    assert response.status_code == 401
    assert response.json() == {"error": "Unauthorized"}
    assert _count(session_factory, Pageview) == 0


def test_missing_secret_is_a_configuration_error(make_client):
    client = make_client(secret_key=None)
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", **_pageview("a")})

    assert response.status_code == 500
    assert "INGEST_SECRET_KEY" in response.json()["error"]


def test_invalid_json_is_rejected(client):
    response = client.post(
        INGEST_PATH, headers={**AUTH, "Content-Type": "application/json"}, content="{not json"
    )

    assert response.status_code == 400
    assert response.json() == {"error": "Invalid JSON"}


def test_table_outside_allow_list_is_rejected(client, session_factory):
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "public.users", "events": [_pageview("a")]})

    assert response.status_code == 400
    assert "users" in response.json()["error"]
    assert _count(session_factory, Pageview) == 0


def test_unrecognized_shape_is_rejected(client):
    response = client.post(INGEST_PATH, headers=AUTH, json={"hello": "world"})

    assert response.status_code == 400
    assert "format" in response.json()["error"].lower()


def test_invalid_field_value_is_rejected(client):
    response = client.post(
        INGEST_PATH, headers=AUTH, json={"table": "pageviews", **_pageview("a", screenWidth="wide")}
    )

    assert response.status_code == 400
    assert "screen_width" in response.json()["error"]


def test_redelivered_event_updates_instead_of_duplicating(client, session_factory):
    payload = {"table": "pageviews", **_pageview("same-id", title="First")}
    client.post(INGEST_PATH, headers=AUTH, json=payload)
    payload["title"] = "Second"
    response = client.post(INGEST_PATH, headers=AUTH, json=payload)

    assert response.status_code == 200
    rows = _rows(session_factory, Pageview)
    assert [(row.id, row.page_title) for row in rows] == [("same-id", "Second")]


def test_duplicate_ids_within_one_batch_store_one_row(client, session_factory):
    events = [_pageview("dup", title="First"), _pageview("dup", title="Last")]
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", "events": events})

    assert response.json()["count"] == 1
    assert [row.page_title for row in _rows(session_factory, Pageview)] == ["Last"]


def test_client_owner_and_site_are_overwritten(client, session_factory):
    event = _pageview("a", user_id="attacker", userId="attacker", site_id="client-site")
    client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", "events": [event]})

    [row] = _rows(session_factory, Pageview)
    assert row.user_id == OWNER_ID
    assert row.site_id == "site-1"
    assert row.raw_payload["user_id"] == "attacker"


def test_aliased_fields_reach_their_columns(client, session_factory):
    event = {
        "eventType": "InitiateCheckout",
        "id": "chk-1",
        "visitorId": "visitor-9",
        "sessionId": "session-9",
        "url": "https://example.com/checkout",
        "content_name": "Course",
        "content_ids": [1234],
        "value": "97.50",
        "currency": "USD",
        "timestamp": 1700000000000,
    }
    response = client.post(INGEST_PATH, headers=AUTH, json={"events": event})

    assert response.status_code == 200
    [row] = _rows(session_factory, InitiateCheckout)
    assert row.visitor_id == "visitor-9"
    assert row.session_id == "session-9"
    assert row.product_name == "Course"
    assert row.product_id == "1234"
    assert row.price_value == 97.5
    assert row.price_currency == "USD"
    assert row.timestamp.year == 2023
    assert row.content_type == "sales_page"


def test_purchase_is_sales_page_regardless_of_rules(client, seed, session_factory):
    seed.rule("site-1", "/obrigado", "normal_page")
    client.post(
        INGEST_PATH,
        headers=AUTH,
        json={"transaction_id": "tx-1", "id": "p-1", "url": "https://example.com/obrigado"},
    )

    [row] = _rows(session_factory, Purchase)
    assert row.transaction_id == "tx-1"
    assert row.content_type == "sales_page"


def test_pageview_classification_uses_page_rules(client, seed, session_factory):
    seed.rule("site-1", "/oferta", "sales_page")
    events = [
        _pageview("ruled", url="https://www.example.com/oferta?utm_source=ads"),
        _pageview("plain", url="https://example.com/sobre"),
    ]
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", "events": events})

    labels = {result["id"]: result["content_type"] for result in response.json()["results"]}
    assert labels == {"ruled": "sales_page", "plain": "article"}


def test_unknown_domain_auto_registers_a_site(client, session_factory):
    event = _pageview("a", url="https://brand-new.io/start", site={"name": "Brand New"})
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", "events": [event]})

    assert response.json()["count"] == 1
    with session_factory() as db:
        site = db.execute(select(Site).where(Site.url == "https://brand-new.io")).scalar_one()
    assert site.name == "Brand New"
    assert site.user_id == OWNER_ID
    [row] = _rows(session_factory, Pageview)
    assert row.site_id == site.id


def test_missing_owner_record_registers_orphan_site(make_client, session_factory):
    client = make_client()
    response = client.post(
        INGEST_PATH, headers=AUTH, json={"table": "pageviews", **_pageview("a", url="https://orphan.io/x")}
    )

    assert response.status_code == 200
    assert response.json()["count"] == 1
    with session_factory() as db:
        site = db.execute(select(Site)).scalar_one()
    assert site.user_id is None
    [row] = _rows(session_factory, Pageview)
    assert row.user_id == OWNER_ID


def test_strict_mode_drops_unmatched_events_silently(make_client, seed, session_factory):
    seed.owner()
    seed.site("site-1", "https://example.com")
    client = make_client(resolution_policy=ResolutionPolicy.STRICT)
    events = [
        _pageview("match", url="https://app.example.com/a"),
        _pageview("miss-1", url="https://notexample.com/a"),
        _pageview("miss-2", url="https://elsewhere.org/a", site_id="site-1"),
    ]
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", "events": events})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["count"] == 1
    assert body["dropped"] == 2
    assert "error" not in body
    assert _count(session_factory, Site) == 1


def test_strict_mode_empty_result_is_still_success(make_client, seed):
    seed.owner()
    client = make_client(resolution_policy=ResolutionPolicy.STRICT)
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", **_pageview("a")})

    assert response.status_code == 200
    assert response.json()["count"] == 0


def test_per_event_mode_reports_each_outcome(make_client, seed, session_factory):
    seed.owner()
    seed.site("site-1", "https://example.com")
    client = make_client(processing_mode=ProcessingMode.PER_EVENT)
    events = [_pageview("good"), _pageview("bad", screenWidth="wide"), _pageview("also-good")]
    response = client.post(INGEST_PATH, headers=AUTH, json={"table": "pageviews", "events": events})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 2
    assert [result["id"] for result in body["results"]] == ["good", "bad", "also-good"]
    assert "error" in body["results"][1]
    assert "error" not in body["results"][0]
    assert _count(session_factory, Pageview) == 2


def test_per_event_mode_reports_invalid_tables_per_event(make_client, seed, session_factory):
    seed.owner()
    seed.site("site-1", "https://example.com")
    client = make_client(processing_mode=ProcessingMode.PER_EVENT)
    events = [
        {"table": "pageviews", **_pageview("good")},
        {"table": "public.users", **_pageview("bad-table")},
        {**_pageview("no-table")},
        "not-an-object",
    ]
    response = client.post(INGEST_PATH, headers=AUTH, json={"events": events})

    assert response.status_code == 200
    body = response.json()
    assert body["count"] == 1
    good, bad_table, no_table, not_object = body["results"]
    assert good["id"] == "good" and "error" not in good
    assert bad_table == {"table": None, "id": "bad-table", "error": "Table not identified or invalid: users"}
    assert no_table["id"] == "no-table" and "invalid" in no_table["error"]
    assert not_object["id"] is None and "format" in not_object["error"].lower()
    assert [row.id for row in _rows(session_factory, Pageview)] == ["good"]


def test_batch_mode_still_rejects_an_invalid_table_outright(make_client, seed, session_factory):
    seed.owner()
    seed.site("site-1", "https://example.com")
    client = make_client()
    events = [{"table": "pageviews", **_pageview("good")}, {"table": "public.users", **_pageview("bad")}]
    response = client.post(INGEST_PATH, headers=AUTH, json={"events": events})

    assert response.status_code == 400
    assert _count(session_factory, Pageview) == 0


def test_oversized_screen_width_is_a_validation_error(client, session_factory):
    response = client.post(
        INGEST_PATH, headers=AUTH, json={"table": "pageviews", **_pageview("a", screenWidth=10**20)}
    )

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/json")
    assert "screen_width" in response.json()["error"]
    assert _count(session_factory, Pageview) == 0


def test_gateway_reports_driver_bind_errors_as_persistence_errors(seed, session):
    seed.owner()
    seed.site("site-1", "https://example.com")
    gateway = EventGateway(session)
    row = {"id": "huge", "site_id": "site-1", "timestamp": datetime(2024, 1, 1), "screen_width": 10**20}

    with pytest.raises(PersistenceError):
        gateway.upsert(EventTable.PAGEVIEWS, [row])

    assert session.execute(select(func.count()).select_from(Pageview)).scalar_one() == 0


def test_preflight_returns_cors_headers(client):
    response = client.options(INGEST_PATH)

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"
    assert "apikey" in response.headers["access-control-allow-headers"]


def test_diagnostics_report_presence_without_values(make_client, seed):
    client = make_client(owner_user_id=None)
    response = client.get(INGEST_PATH)

    assert response.status_code == 200
    body = response.json()
    assert body["env"]["INGEST_SECRET_KEY"] == "OK"
    assert body["env"]["OWNER_USER_ID"] == "MISSING"
    assert body["connection_test"]["status"] == "SUCCESS"
    assert SECRET not in response.text


def test_diagnostics_can_be_disabled(make_client):
    client = make_client(diagnostics_enabled=False)

    assert client.get(INGEST_PATH).status_code == 404


def test_preflight_allows_any_requested_header(client):
    response = client.options(
        INGEST_PATH,
        headers={
            "Origin": "https://shop.example.com",
            "Access-Control-Request-Method": "POST",
            "Access-Control-Request-Headers": "x-tracker-version, apikey",
        },
    )

    assert response.status_code == 200
    assert "x-tracker-version" in response.headers["access-control-allow-headers"].lower()

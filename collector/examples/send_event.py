"""Example client that posts a batch of tracking events to the ingestion API."""
from __future__ import annotations

import argparse
import os
import uuid
from datetime import datetime, timezone

import requests


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Send sample tracking events")
    parser.add_argument(
        "--api-url",
        default=os.environ.get("INGEST_API_URL", "http://127.0.0.1:8000"),
        help="Ingestion API base URL (default: %(default)s or INGEST_API_URL)",
    )
    parser.add_argument(
        "--secret",
        default=os.environ.get("INGEST_SECRET_KEY"),
        help="Shared secret sent as a bearer token (INGEST_SECRET_KEY)",
    )
    parser.add_argument(
        "--site-url",
        default="https://example.com",
        help="Origin of the tracked site (default: %(default)s)",
    )
    parser.add_argument(
        "--use-apikey-header",
        action="store_true",
        help="Send the secret in the apikey header instead of Authorization",
    )
    args = parser.parse_args()
    if not args.secret:
        parser.error("A secret must be supplied via --secret or INGEST_SECRET_KEY")
    return args


def build_batch(site_url: str) -> dict:
    visitor_id = f"visitor-{uuid.uuid4().hex[:8]}"
    now = datetime.now(timezone.utc).isoformat()
    return {
        "events": [
            {
                "eventType": "PageView",
                "id": str(uuid.uuid4()),
                "visitorId": visitor_id,
                "timestamp": now,
                "url": f"{site_url}/oferta?utm_source=newsletter",
                "title": "Oferta",
                "utm_source": "newsletter",
                "screenWidth": 1440,
                "deviceType": "desktop",
            },
            {
                "eventType": "InitiateCheckout",
                "id": str(uuid.uuid4()),
                "visitorId": visitor_id,
                "sessionId": f"session-{uuid.uuid4().hex[:8]}",
                "timestamp": now,
                "url": f"{site_url}/checkout",
                "content_name": "Course",
                "content_ids": ["sku-1"],
                "value": 97.0,
                "currency": "USD",
            },
        ]
    }


def main() -> None:
    args = parse_args()
    if args.use_apikey_header:
        headers = {"apikey": args.secret}
    else:
        headers = {"Authorization": f"Bearer {args.secret}"}

    response = requests.post(
        f"{args.api_url}/api/ingest", headers=headers, json=build_batch(args.site_url), timeout=10
    )
    response.raise_for_status()
    print("Events stored:", response.json())

    diagnostic = requests.get(f"{args.api_url}/api/ingest", timeout=10)
    if diagnostic.ok:
        print("Diagnostic:", diagnostic.json())


if __name__ == "__main__":
    main()

import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from collector.app.config import Settings  # noqa: E402  pylint: disable=wrong-import-position
from collector.app.database import build_engine, build_session_factory  # noqa: E402
from collector.app.models import Base, Owner, Site, SitePage  # noqa: E402

SECRET = "tracker-secret"
OWNER_ID = "owner-1"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'ingestion.db'}"


@pytest.fixture
def settings(database_url):
    return Settings(secret_key=SECRET, owner_user_id=OWNER_ID, database_url=database_url)


@pytest.fixture
def session_factory(database_url):
    engine = build_engine(database_url)
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def session(session_factory):
    with session_factory() as db:
        yield db


@pytest.fixture
def seed(session_factory):
    """Insert an owner, sites and page rules; returns a helper."""

    class Seeder:
        def owner(self, owner_id=OWNER_ID):
            with session_factory() as db:
                db.add(Owner(id=owner_id))
                db.commit()

        def site(self, site_id, url, owner_id=OWNER_ID, **extra):
            with session_factory() as db:
                db.add(Site(id=site_id, user_id=owner_id, name=f"Site {site_id}", url=url, **extra))
                db.commit()

        def rule(self, site_id, path, page_type):
            with session_factory() as db:
                db.add(SitePage(site_id=site_id, path=path, page_type=page_type))
                db.commit()

    return Seeder()

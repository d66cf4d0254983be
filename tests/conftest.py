"""Shared fixtures: throwaway SQLite store, in-memory media host, API client."""

import os
import tempfile

# Must be set before portfolio_cms.db.engine is imported anywhere
_DB_DIR = tempfile.mkdtemp(prefix="portfolio-cms-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'test.db')}"
for _key in ("CLOUDINARY_CLOUD_NAME", "CLOUDINARY_API_KEY", "CLOUDINARY_API_SECRET"):
    os.environ[_key] = ""

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

import portfolio_cms.models.content_models  # noqa: E402,F401
from portfolio_cms.db.engine import Base, SessionLocal, engine  # noqa: E402
from portfolio_cms.services.errors import RemoteError  # noqa: E402
from portfolio_cms.services.media_host import MediaHost  # noqa: E402
from portfolio_cms.services.media_ingestion import (  # noqa: E402
    MediaIngestion,
    get_media_ingestion,
)


class FakeMediaHost(MediaHost):
    """In-memory stand-in for Cloudinary that records every call."""

    def __init__(self):
        self.assets = {}
        self.uploads = []
        self.destroyed = []
        self.fail_destroy = False

    async def find_by_hash(self, folder, content_hash):
        for asset in self.assets.values():
            if asset["folder"] == folder and asset["hash"] == content_hash:
                return dict(asset)
        return None

    async def upload(self, data, *, folder, name, content_hash):
        public_id = f"{folder}/{name}"
        asset = {
            "url": f"https://res.cloudinary.com/demo/image/upload/v1700000000/{public_id}.png",
            "publicId": public_id,
            "width": 640,
            "height": 480,
            "format": "png",
            "createdAt": f"2024-01-01T00:00:{len(self.uploads):02d}Z",
            "folder": folder,
            "hash": content_hash,
        }
        self.uploads.append(public_id)
        self.assets[public_id] = asset
        return dict(asset)

    async def destroy(self, public_id):
        if self.fail_destroy:
            raise RemoteError("media host unavailable")
        self.destroyed.append(public_id)
        return self.assets.pop(public_id, None) is not None

    async def search(self, folder, max_results):
        found = [dict(a) for a in self.assets.values() if a["folder"] == folder]
        found.sort(key=lambda a: a["createdAt"], reverse=True)
        return found[:max_results]

    def variant_url(self, public_id, transformation):
        return f"https://res.cloudinary.com/demo/image/upload/{transformation}/{public_id}"


@pytest.fixture(autouse=True)
def fresh_store():
    """Recreate the content tables for every test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def media_host() -> FakeMediaHost:
    return FakeMediaHost()


@pytest.fixture
def media(media_host) -> MediaIngestion:
    return MediaIngestion(media_host)


@pytest.fixture
def client(media):
    from portfolio_cms.main import app

    app.dependency_overrides[get_media_ingestion] = lambda: media
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def project_payload():
    def _make(slug="alpha", **overrides):
        payload = {
            "slug": slug,
            "title": slug.title(),
            "description": f"About {slug}",
            "image": "",
            "content": f"# {slug}\n\nBody text.",
        }
        payload.update(overrides)
        return payload

    return _make

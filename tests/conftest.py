"""
Pytest configuration and shared fixtures
"""
import uuid
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy.orm import sessionmaker

from fieldtask.auth.principal import Principal
from fieldtask.db import Base, build_engine
from fieldtask.models import models  # noqa: F401  registers tables
from fieldtask.models.models import (
    Branch,
    Client,
    InventoryItem,
    SectionReferenceMedia,
    Site,
    SiteSection,
    User,
)
from fieldtask.schemas.common import IncomingFile
from fieldtask.storage.provider import MediaHost, UploadedMedia, detect_media_kind, file_format


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests against a throwaway SQLite database")


class FakeMediaHost(MediaHost):
    """In-memory media host that records calls and can be told to fail."""

    def __init__(self):
        self.uploads = []
        self.deleted = []
        self.fail_upload_at = None  # 1-based index of the upload that should fail
        self.fail_deletes = False

    def upload(self, data, *, folder, filename, content_type):
        if self.fail_upload_at is not None and len(self.uploads) + 1 >= self.fail_upload_at:
            raise ConnectionError("media host unreachable")
        storage_id = f"{folder}/{uuid.uuid4().hex}-{filename}"
        self.uploads.append(storage_id)
        return UploadedMedia(
            secure_url=f"https://media.test/{storage_id}",
            storage_id=storage_id,
            kind=detect_media_kind(content_type, filename) or "image",
            format=file_format(filename),
            width=640,
            height=480,
            duration=12.5 if content_type.startswith("video/") else None,
        )

    def delete(self, storage_id, resource_type="image"):
        if self.fail_deletes:
            raise ConnectionError("media host unreachable")
        self.deleted.append(storage_id)


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = Session()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def host():
    return FakeMediaHost()


def _reference(url, caption, sort_index):
    return SectionReferenceMedia(
        url=f"https://media.test/{url}",
        storage_id=f"sections/{url}",
        caption=caption,
        media_kind="image",
        format="jpg",
        sort_index=sort_index,
    )


@pytest.fixture
def seed(db):
    """Branch, admin, two workers, a client with a two-section site, and stock."""
    branch = Branch(name="Vancouver", code="VAN")
    db.add(branch)
    db.flush()

    admin = User(name="Admin", email="admin@example.com", role="admin")
    worker = User(name="Wes Worker", email="worker@example.com", role="worker", phone="+16045550100")
    other_worker = User(name="Olive Other", email="other@example.com", role="worker")
    client = Client(name="Green Acres", email="client@example.com", whatsapp="+16045550199")
    db.add_all([admin, worker, other_worker, client])
    db.flush()

    s1 = SiteSection(name="Front lawn", area=120, sort_index=0)
    s1.reference_media = [_reference("front-1.jpg", "north edge", 0), _reference("front-2.jpg", "south edge", 1)]
    s2 = SiteSection(name="Back garden", area=80, sort_index=1)
    s2.reference_media = [_reference("back-1.jpg", "beds", 0)]
    site = Site(client_id=client.id, branch_id=branch.id, name="Green Acres Main", city="Vancouver")
    site.sections = [s1, s2]

    other_site = Site(client_id=client.id, branch_id=branch.id, name="Green Acres Annex")
    other_site.sections = [SiteSection(name="Parking strip", sort_index=0)]

    fertilizer = InventoryItem(branch_id=branch.id, name="Fertilizer", unit="kg", quantity_current=10, quantity_minimum=4)
    herbicide = InventoryItem(branch_id=branch.id, name="Herbicide", unit="liter", quantity_current=2, quantity_minimum=1)
    db.add_all([site, other_site, fertilizer, herbicide])
    db.commit()

    return SimpleNamespace(
        branch=branch,
        admin=admin,
        worker=worker,
        other_worker=other_worker,
        client=client,
        site=site,
        s1=s1,
        s2=s2,
        other_site=other_site,
        fertilizer=fertilizer,
        herbicide=herbicide,
        as_admin=Principal(id=admin.id, role="admin"),
        as_worker=Principal(id=worker.id, role="worker"),
        as_other_worker=Principal(id=other_worker.id, role="worker"),
        as_client=Principal(id=client.id, role="client"),
    )


@pytest.fixture
def task_payload(seed):
    """Factory for create_task payloads on the seeded site."""

    def make(**overrides):
        payload = {
            "title": "Spring cleanup",
            "description": "Mow, edge and fertilize",
            "site_id": seed.site.id,
            "section_ids": [seed.s1.id, seed.s2.id],
            "scheduled_date": datetime.utcnow() + timedelta(days=1),
            "cost_labor": 120.0,
            "cost_materials": 35.5,
        }
        payload.update(overrides)
        return payload

    return make


def image_file(name="photo.jpg", size=64):
    return IncomingFile(filename=name, content_type="image/jpeg", data=b"\xff" * size)


def video_file(name="walkthrough.mp4", size=128):
    return IncomingFile(filename=name, content_type="video/mp4", data=b"\x00" * size)

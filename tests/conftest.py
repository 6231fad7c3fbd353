from __future__ import annotations

import io
import os

# Must be set before any propimage module reads the environment.
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from propimage.config import ModerationSettings, StorageSettings
from propimage.main import app, get_db, get_pipeline, get_storage
from propimage.models import Base, Property, User
from propimage.pipeline import UploadPipeline
from propimage.security import create_access_token
from propimage.utils.remote_fetch import FetchedImage
from propimage.vision import (
    ClassificationResult,
    FaceDetection,
    LabelDetection,
    ObjectDetection,
    SafetyScores,
)


def make_result(
    *,
    faces: tuple[float, ...] = (),
    objects: tuple[tuple[str, float], ...] = (),
    labels: tuple[tuple[str, float], ...] = (),
    safety: tuple[float | None, float | None, float | None] = (0.0, 0.0, 0.0),
) -> ClassificationResult:
    adult, violence, racy = safety
    return ClassificationResult(
        available=True,
        faces=tuple(FaceDetection(confidence=c) for c in faces),
        objects=tuple(ObjectDetection(name=n, confidence=c) for n, c in objects),
        labels=tuple(LabelDetection(description=d, confidence=c) for d, c in labels),
        safety=SafetyScores(adult=adult, violence=violence, racy=racy),
        raw={"labelAnnotations": [{"description": d, "score": c} for d, c in labels]},
    )


class FakeClassifier:
    def __init__(self, result: ClassificationResult) -> None:
        self.result = result
        self.calls: list[bytes] = []

    def classify(self, raw: bytes) -> ClassificationResult:
        self.calls.append(raw)
        return self.result


class FakeFetcher:
    def __init__(self, fetched: FetchedImage | None = None, error: Exception | None = None) -> None:
        self.fetched = fetched
        self.error = error
        self.urls: list[str] = []

    def __call__(self, url: str, *, max_bytes: int, timeout: float) -> FetchedImage:
        self.urls.append(url)
        if self.error is not None:
            raise self.error
        assert self.fetched is not None
        return self.fetched


def image_bytes(fmt: str = "JPEG", size: tuple[int, int] = (320, 240)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, (40, 90, 160)).save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture()
def jpeg_bytes() -> bytes:
    return image_bytes()


@pytest.fixture()
def settings() -> ModerationSettings:
    return ModerationSettings()


@pytest.fixture()
def storage(tmp_path) -> StorageSettings:
    root = tmp_path / "uploads"
    return StorageSettings(
        temp_dir=str(root / "temp"),
        properties_dir=str(root / "properties"),
        base_url="http://testserver/uploads",
        max_upload_bytes=64 * 1024,
        watermark_enabled=False,
    )


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def owner_and_listing(session_factory) -> tuple[int, int]:
    with session_factory() as s:
        owner = User(email="owner@example.com", name="Owner")
        other = User(email="other@example.com", name="Other")
        s.add_all([owner, other])
        s.flush()
        prop = Property(owner_id=owner.id, title="2BHK near the park")
        s.add(prop)
        s.commit()
        return owner.id, prop.id


@pytest.fixture()
def classifier() -> FakeClassifier:
    return FakeClassifier(make_result())


@pytest.fixture()
def fetcher(jpeg_bytes) -> FakeFetcher:
    return FakeFetcher(FetchedImage(raw=jpeg_bytes, content_type="image/jpeg", filename="photo.jpg"))


@pytest.fixture()
def pipeline(settings, storage, classifier, fetcher) -> UploadPipeline:
    return UploadPipeline(
        moderation=settings,
        storage=storage,
        classifier_factory=lambda: classifier,
        fetcher=fetcher,
    )


@pytest.fixture()
def client(session_factory, pipeline):
    def _get_db():
        session = session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_storage] = lambda: pipeline.storage
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def auth_headers(owner_and_listing) -> dict[str, str]:
    owner_id, _ = owner_and_listing
    return {"Authorization": f"Bearer {create_access_token(user_id=owner_id, role='owner')}"}

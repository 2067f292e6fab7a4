from __future__ import annotations

import asyncio
import math
from typing import Any

import pytest

from ai.analysis import AnalysisResult
from etl.config import InstitutionSettings, LiveDatabaseSettings, StagingDatabaseSettings
from etl.db import LiveStore, StagingStore, make_engine
from etl.errors import AnalysisError, DocumentFetchError, EmbeddingError
from etl.fetch import FetchedDocument
from etl.models import Base

DIM = 384


def padded(values: list[float], dim: int = DIM) -> list[float]:
    return list(values) + [0.0] * (dim - len(values))


# Unit query vector and an orthonormal companion, both exactly representable.
QUERY = padded([0.5, 0.5, 0.5, 0.5])
_ORTHO = padded([0.5, -0.5, 0.5, -0.5])


def at_similarity(similarity: float) -> list[float]:
    """Unit vector whose cosine similarity to QUERY is ``similarity``."""
    rest = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return [similarity * q + rest * o for q, o in zip(QUERY, _ORTHO)]


@pytest.fixture
def staging(tmp_path_factory) -> StagingStore:
    db_dir = tmp_path_factory.mktemp("staging-db")
    store = StagingStore(make_engine(StagingDatabaseSettings(url=f"sqlite+aiosqlite:///{db_dir / 'staging.db'}")))
    asyncio.run(store.create_schema())
    yield store
    asyncio.run(store.dispose())


@pytest.fixture
def live(tmp_path_factory) -> LiveStore:
    db_dir = tmp_path_factory.mktemp("live-db")
    store = LiveStore(make_engine(LiveDatabaseSettings(url=f"sqlite+aiosqlite:///{db_dir / 'live.db'}")))

    async def create() -> None:
        async with store.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    asyncio.run(create())
    yield store
    asyncio.run(store.dispose())


@pytest.fixture
def institution() -> InstitutionSettings:
    return InstitutionSettings(name="NSW Government", slug="nsw-gov", source_id="nswgov")


class FakeFetcher:
    """Serves canned documents; a value that is an exception is raised instead."""

    def __init__(self, documents: dict[str, Any] | None = None) -> None:
        self.documents = documents or {}
        self.calls: list[str] = []

    async def fetch(self, url: str) -> FetchedDocument:
        self.calls.append(url)
        value = self.documents.get(url)
        if value is None:
            raise DocumentFetchError(f"404 for {url}", component="fetcher")
        if isinstance(value, Exception):
            raise value
        if isinstance(value, FetchedDocument):
            return value
        content = value.encode("utf-8") if isinstance(value, str) else value
        return FetchedDocument(url=url, content=content, content_type="text/plain")


class FakeAnalyzer:
    """Returns a fixed result, or raises AnalysisError for texts containing ``fail_on``."""

    def __init__(self, result: AnalysisResult | None = None, fail_on: str | None = None) -> None:
        self.result = result or AnalysisResult()
        self.fail_on = fail_on
        self.texts: list[str] = []

    async def analyze(self, text: str) -> AnalysisResult:
        self.texts.append(text)
        if self.fail_on and self.fail_on in text:
            raise AnalysisError("analysis service down", component="analyzer")
        return self.result


class FakeEmbedder:
    """Vectors keyed by the first line (the role title) of the embedded text."""

    def __init__(self, vectors: dict[str, list[float]] | None = None, default: list[float] | None = None) -> None:
        self.vectors = vectors or {}
        self.default = default
        self.texts: list[str] = []

    async def embed(self, text: str) -> list[float]:
        self.texts.append(text)
        title = text.splitlines()[0]
        vector = self.vectors.get(title, self.default)
        if vector is None:
            raise EmbeddingError(f"no vector for {title!r}", component="embedder")
        return vector

"""Wiring of stores, collaborators and pipeline components from settings."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

from ai.analysis import HttpTextAnalyzer, TextAnalyzer
from ai.skills import TaxonomyAnalyzer
from .config import Settings
from .db import LiveStore, StagingStore, build_stores
from .fetch import DocumentFetcher, HttpDocumentFetcher
from .pipelines.batch import BatchOrchestrator, BatchReport
from .pipelines.documents import DocumentIngestor
from .pipelines.jobs import VersionedJobStore
from .pipelines.linker import GraphLinker
from .pipelines.resolver import EntityKeyResolver
from .pipelines.similarity import GeneralRoleCanonicalizer, SimilarityMatcher

logger = logging.getLogger(__name__)


def default_analyzer(settings: Settings) -> TextAnalyzer:
    """HTTP analysis service when configured, otherwise the offline taxonomy analyzer."""
    if settings.analysis.endpoint:
        return HttpTextAnalyzer(settings.analysis)
    logger.info("No analysis endpoint configured, using taxonomy analyzer")
    return TaxonomyAnalyzer(settings.analysis)


def build_orchestrator(
    settings: Settings,
    staging: StagingStore,
    live: LiveStore,
    *,
    fetcher: DocumentFetcher | None = None,
    analyzer: TextAnalyzer | None = None,
    embedder: Any | None = None,
) -> BatchOrchestrator:
    """Assemble a BatchOrchestrator; collaborators default to the production ones."""
    resolver = EntityKeyResolver(staging)
    documents = DocumentIngestor(
        staging,
        fetcher or HttpDocumentFetcher(settings.documents),
        analyzer or default_analyzer(settings),
        max_concurrency=settings.documents.max_concurrency,
    )

    canonicalizer = None
    if settings.similarity.enabled:
        if embedder is None:
            from ai.embeddings import SentenceTransformerEmbedder

            embedder = SentenceTransformerEmbedder(settings.embeddings)
        canonicalizer = GeneralRoleCanonicalizer(
            staging,
            SimilarityMatcher(staging, dim=settings.embeddings.dim),
            resolver,
            embedder,
            threshold=settings.similarity.general_role_threshold,
        )

    return BatchOrchestrator(
        staging,
        live,
        resolver,
        documents,
        VersionedJobStore(staging),
        GraphLinker(staging),
        canonicalizer,
        institution=settings.institution,
        batch_size=settings.batch.size,
        max_concurrency=settings.batch.max_concurrency,
    )


def load_records(path: str | Path) -> list[dict]:
    """Processed records from a JSON file (a list, or ``{"records": [...]}``)."""
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("records", [])
    if not isinstance(data, list):
        raise ValueError(f"{path} does not contain a list of records")
    return data


async def run_batch(settings: Settings, path: str | Path) -> BatchReport:
    """Load records from ``path`` and store them in the staging store."""
    staging, live = build_stores(settings)
    try:
        orchestrator = build_orchestrator(settings, staging, live)
        return await orchestrator.store_batch(load_records(path))
    finally:
        await staging.dispose()
        await live.dispose()

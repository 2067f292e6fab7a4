"""Embedding similarity search and general-role canonicalisation.

On PostgreSQL the search is pushed down to pgvector (``<=>`` cosine
distance). Other engines get an exact numpy scan with the same contract:
results strictly above the threshold, best first, at most ``limit``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Sequence

import numpy as np
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import StagingStore
from ..errors import DanglingReferenceError, EmbeddingError, TransactionError, ValidationError
from ..models import EMBEDDING_DIM, Base, GeneralRole, Role, SyncStatus
from .normalization import normalize_text
from .resolver import EntityKeyResolver

if TYPE_CHECKING:
    from ai.embeddings import Embedder

logger = logging.getLogger(__name__)

COMPONENT = "similarity"

TABLES: dict[str, type[Base]] = {
    "roles": Role,
    "general_roles": GeneralRole,
}


@dataclass(frozen=True)
class SimilarMatch:
    id: int
    similarity: float


def cosine_similarity(a: np.ndarray, b: np.ndarray) -> float | None:
    """Cosine similarity, or None when either vector has zero norm."""
    norm = float(np.linalg.norm(a) * np.linalg.norm(b))
    if norm == 0.0:
        return None
    return float(np.dot(a, b) / norm)


class SimilarityMatcher:
    """Nearest-neighbour lookup over stored role embeddings."""

    def __init__(self, staging: StagingStore, *, dim: int = EMBEDDING_DIM) -> None:
        self.staging = staging
        self.dim = dim

    async def find_similar(
        self,
        vector: Sequence[float],
        table: str,
        threshold: float,
        limit: int,
    ) -> list[SimilarMatch]:
        """Rows of ``table`` whose cosine similarity to ``vector`` exceeds ``threshold``.

        Args:
            vector: Query embedding
            table: "roles" or "general_roles"
            threshold: Strict lower bound on similarity
            limit: Maximum number of matches

        Returns:
            Matches ordered by descending similarity
        """
        model = self._model(table)
        query = np.asarray(vector, dtype=np.float64)
        if query.shape != (self.dim,):
            raise ValidationError(
                f"Expected a {self.dim}-dimensional vector, got shape {query.shape}",
                component=COMPONENT,
            )
        if limit <= 0:
            return []

        try:
            if self.staging.dialect == "postgresql":
                return await self._search_pgvector(model, query, threshold, limit)
            return await self._search_exact(model, query, threshold, limit)
        except SQLAlchemyError as e:
            raise TransactionError(f"Similarity search on {table} failed: {e}", component=COMPONENT) from e

    async def find_similar_to_row(
        self,
        row_id: int,
        table: str,
        threshold: float,
        limit: int,
    ) -> list[SimilarMatch]:
        """Like ``find_similar``, seeded by a stored row's embedding; the row itself is excluded."""
        model = self._model(table)
        async with self.staging.session() as session:
            row = await session.get(model, row_id)
            if row is None:
                raise DanglingReferenceError(f"{table} {row_id} does not exist", component=COMPONENT)
            embedding = row.embedding
        if embedding is None:
            logger.debug(f"{table} {row_id} has no embedding")
            return []
        matches = await self.find_similar(embedding, table, threshold, limit + 1)
        return [m for m in matches if m.id != row_id][:limit]

    def _model(self, table: str) -> type[Base]:
        model = TABLES.get(table)
        if model is None:
            raise ValueError(f"Table {table} has no embeddings")
        return model

    async def _search_pgvector(
        self,
        model: type[Base],
        query: np.ndarray,
        threshold: float,
        limit: int,
    ) -> list[SimilarMatch]:
        distance = model.embedding.cosine_distance(query)
        stmt = (
            select(model.id, (1 - distance).label("similarity"))
            .where(model.embedding.is_not(None))
            .where(1 - distance > threshold)
            .order_by(distance)
            .limit(limit)
        )
        async with self.staging.session() as session:
            rows = (await session.execute(stmt)).all()
        return [SimilarMatch(row.id, float(row.similarity)) for row in rows]

    async def _search_exact(
        self,
        model: type[Base],
        query: np.ndarray,
        threshold: float,
        limit: int,
    ) -> list[SimilarMatch]:
        stmt = select(model.id, model.embedding).where(model.embedding.is_not(None))
        async with self.staging.session() as session:
            rows = (await session.execute(stmt)).all()

        matches = []
        for row_id, embedding in rows:
            similarity = cosine_similarity(query, np.asarray(embedding, dtype=np.float64))
            if similarity is not None and similarity > threshold:
                matches.append(SimilarMatch(row_id, similarity))
        matches.sort(key=lambda m: (-m.similarity, m.id))
        return matches[:limit]


def role_embedding_text(title: str, description: str | None) -> str:
    """Text a role is embedded from."""
    parts = [title.strip()]
    if description:
        parts.append(normalize_text(description))
    return "\n".join(p for p in parts if p)


@dataclass(frozen=True)
class GeneralRoleChoice:
    """General role picked for a role, plus the embedding to store on it."""
    role_id: int
    general_role_id: int
    embedding: list[float] | None = None


class GeneralRoleCanonicalizer:
    """Maps company roles onto general roles by embedding similarity.

    The best general role above ``threshold`` is linked; when none qualifies
    a new general role is created from the role itself. ``choose`` does the
    embedding and search work; ``assign`` writes the link and can join a
    caller's transaction.
    """

    def __init__(
        self,
        staging: StagingStore,
        matcher: SimilarityMatcher,
        resolver: EntityKeyResolver,
        embedder: Embedder,
        *,
        threshold: float = 0.5,
    ) -> None:
        self.staging = staging
        self.matcher = matcher
        self.resolver = resolver
        self.embedder = embedder
        self.threshold = threshold

    async def canonicalize(self, role_id: int) -> int | None:
        """Link ``role_id`` to a general role and return that general role's id.

        Returns None when the role could not be embedded; the role then stays
        unlinked until a later run.

        Raises:
            DanglingReferenceError: The role does not exist
        """
        choice = await self.choose(role_id)
        if choice is None:
            return None
        return await self.assign(choice)

    async def choose(self, role_id: int) -> GeneralRoleChoice | None:
        """Pick the general role for ``role_id`` without linking it.

        A role that is already linked keeps its general role. A general role
        created here is reference data and is committed straight away.
        """
        async with self.staging.session() as session:
            role = await session.get(Role, role_id)
            if role is None:
                raise DanglingReferenceError(f"roles {role_id} does not exist", component=COMPONENT)
            if role.general_role_id is not None:
                return GeneralRoleChoice(role_id, role.general_role_id)
            title, description, stored = role.title, role.description, role.embedding

        if stored is not None:
            vector = [float(x) for x in stored]
        else:
            try:
                vector = await self.embedder.embed(role_embedding_text(title, description))
            except EmbeddingError as e:
                logger.warning(f"Could not embed role {role_id}, leaving it unlinked: {e}")
                return None

        matches = await self.matcher.find_similar(vector, "general_roles", self.threshold, 1)
        if matches:
            general_role_id = matches[0].id
            logger.info(f"Role {role_id} matches general role {general_role_id} ({matches[0].similarity:.3f})")
        else:
            resolved = await self.resolver.resolve_general_role(title, description=description, embedding=vector)
            general_role_id = resolved.id
            logger.info(f"Role {role_id} mapped to {'existing' if resolved.existing else 'new'} general role {general_role_id}")
        return GeneralRoleChoice(role_id, general_role_id, vector)

    async def assign(self, choice: GeneralRoleChoice, *, session: AsyncSession | None = None) -> int:
        """Write ``choice`` onto its role and return the role's general role id.

        A link made concurrently by another writer wins; the role is only
        touched when it gains a general role or an embedding.

        Raises:
            DanglingReferenceError: The role does not exist
            TransactionError: Any other relational failure
        """
        try:
            async with self.staging.transaction(session) as session:
                stmt = (
                    select(Role)
                    .where(Role.id == choice.role_id)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                role = (await session.execute(stmt)).scalar_one_or_none()
                if role is None:
                    raise DanglingReferenceError(f"roles {choice.role_id} does not exist", component=COMPONENT)
                changed = False
                if role.general_role_id is None:
                    role.general_role_id = choice.general_role_id
                    changed = True
                if role.embedding is None and choice.embedding is not None:
                    role.embedding = choice.embedding
                    changed = True
                if changed:
                    role.sync_status = SyncStatus.PENDING.value
                    await session.flush()
                return role.general_role_id
        except SQLAlchemyError as e:
            raise TransactionError(
                f"Linking role {choice.role_id} to general role failed: {e}",
                component=COMPONENT,
            ) from e

"""Idempotent many-to-many links between roles, jobs and reference data."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import StagingStore
from ..errors import ConflictError, DanglingReferenceError, TransactionError
from ..models import (
    Base,
    Capability,
    Job,
    JobSkill,
    Role,
    RoleCapability,
    RoleSkill,
    RoleTaxonomy,
    Skill,
    SyncStatus,
    Taxonomy,
)

logger = logging.getLogger(__name__)

COMPONENT = "linker"

DEFAULT_CAPABILITY_TYPE = "core"

# relation -> (link model, target model, target column)
RELATIONS: dict[str, tuple[type[Base], type[Base], str]] = {
    "skill": (RoleSkill, Skill, "skill_id"),
    "capability": (RoleCapability, Capability, "capability_id"),
    "taxonomy": (RoleTaxonomy, Taxonomy, "taxonomy_id"),
}


@dataclass(frozen=True)
class Link:
    """One requested role link."""
    role_id: int
    target_id: int
    relation: str
    attributes: dict[str, Any] | None = None


@dataclass
class LinkSummary:
    created: int = 0
    updated: int = 0
    dangling: list[Link] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated


class GraphLinker:
    """Writes role and job links. Re-linking updates attributes in place."""

    def __init__(self, staging: StagingStore) -> None:
        self.staging = staging

    async def link(
        self,
        role_id: int,
        target_id: int,
        relation: str,
        attributes: dict[str, Any] | None = None,
        *,
        session: AsyncSession | None = None,
    ) -> bool:
        """Link a role to a skill, capability or taxonomy.

        Args:
            role_id: Role being linked
            target_id: Skill, capability or taxonomy id
            relation: "skill", "capability" or "taxonomy"
            attributes: Link attributes; for capabilities ``capability_type``
                (part of the key, default "core") and ``level``
            session: Joins the caller's transaction instead of committing alone

        Returns:
            True when a new link was created, False when it already existed

        Raises:
            DanglingReferenceError: Role or target does not exist
            ConflictError: A concurrent writer created the link first (session mode)
            TransactionError: Any other relational failure
        """
        if relation not in RELATIONS:
            raise ValueError(f"Unknown relation: {relation}")
        link_model, target_model, target_column = RELATIONS[relation]
        attributes = dict(attributes or {})

        key: dict[str, Any] = {"role_id": role_id, target_column: target_id}
        values: dict[str, Any] = {}
        if relation == "capability":
            key["capability_type"] = attributes.get("capability_type") or DEFAULT_CAPABILITY_TYPE
            values["level"] = attributes.get("level")

        return await self._link(
            [(Role, role_id), (target_model, target_id)],
            link_model,
            key,
            values,
            f"role {role_id} -> {relation} {target_id}",
            session,
        )

    async def link_job_skill(self, job_id: int, skill_id: int, *, session: AsyncSession | None = None) -> bool:
        """Link a job to a skill. Same idempotency contract as ``link``."""
        return await self._link(
            [(Job, job_id), (Skill, skill_id)],
            JobSkill,
            {"job_id": job_id, "skill_id": skill_id},
            {},
            f"job {job_id} -> skill {skill_id}",
            session,
        )

    async def link_many(self, links: Iterable[Link], *, session: AsyncSession | None = None) -> LinkSummary:
        """Apply links one by one; dangling links are logged and skipped."""
        summary = LinkSummary()
        for item in links:
            try:
                created = await self.link(item.role_id, item.target_id, item.relation, item.attributes, session=session)
            except DanglingReferenceError as e:
                logger.warning(f"Skipping dangling link: {e}")
                summary.dangling.append(item)
                continue
            if created:
                summary.created += 1
            else:
                summary.updated += 1
        return summary

    async def _link(
        self,
        requires: list[tuple[type[Base], int]],
        link_model: type[Base],
        key: dict[str, Any],
        values: dict[str, Any],
        label: str,
        session: AsyncSession | None = None,
    ) -> bool:
        try:
            if session is not None:
                return await self._write(session, requires, link_model, key, values)
            try:
                return await self._write_once(requires, link_model, key, values)
            except IntegrityError:
                # A concurrent record created the same link first.
                logger.info(f"Concurrent link {label}, retrying as update")
                return await self._write_once(requires, link_model, key, values)
        except IntegrityError as e:
            raise ConflictError(f"Link {label} was created concurrently", component=COMPONENT) from e
        except SQLAlchemyError as e:
            raise TransactionError(f"Linking {label} failed: {e}", component=COMPONENT) from e

    async def _write_once(
        self,
        requires: list[tuple[type[Base], int]],
        link_model: type[Base],
        key: dict[str, Any],
        values: dict[str, Any],
    ) -> bool:
        async with self.staging.transaction() as session:
            return await self._write(session, requires, link_model, key, values)

    async def _write(
        self,
        session: AsyncSession,
        requires: list[tuple[type[Base], int]],
        link_model: type[Base],
        key: dict[str, Any],
        values: dict[str, Any],
    ) -> bool:
        for model, row_id in requires:
            await self._require(session, model, row_id)
        identity = tuple(key[column.key] for column in link_model.__table__.primary_key.columns)
        existing = await session.get(link_model, identity)
        if existing is None:
            session.add(link_model(**key, **values, sync_status=SyncStatus.PENDING.value))
            await session.flush()
            return True
        for name, value in values.items():
            setattr(existing, name, value)
        existing.sync_status = SyncStatus.PENDING.value
        return False

    async def _require(self, session: AsyncSession, model: type[Base], row_id: int) -> None:
        if await session.get(model, row_id) is None:
            raise DanglingReferenceError(
                f"{model.__tablename__} {row_id} does not exist",
                component=COMPONENT,
            )

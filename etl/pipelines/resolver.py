"""Get-or-create resolution of entities by natural key.

Existing rows are returned unchanged; later attributes are never merged in.
Each insert runs in its own short transaction so a losing concurrent writer
only rolls back its own insert, then re-reads the winner.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..db import StagingStore
from ..errors import ConflictError, InvalidKeyError, TransactionError
from ..models import (
    Base,
    Capability,
    CapabilityLevel,
    Company,
    Division,
    GeneralRole,
    Institution,
    Role,
    Skill,
    SyncStatus,
    Taxonomy,
)
from .normalization import normalize_key, slugify

logger = logging.getLogger(__name__)

COMPONENT = "resolver"

ENTITY_MODELS: dict[str, type[Base]] = {
    "institution": Institution,
    "company": Company,
    "division": Division,
    "role": Role,
    "skill": Skill,
    "capability": Capability,
    "capability_level": CapabilityLevel,
    "taxonomy": Taxonomy,
    "general_role": GeneralRole,
}


@dataclass(frozen=True)
class Resolved:
    """Identity of a resolved entity and whether it already existed."""
    id: int
    existing: bool


def _clean(value: str | None) -> str | None:
    if value is None:
        return None
    value = value.strip()
    return value or None


class EntityKeyResolver:
    """Resolves institutions, companies, roles and reference data to ids.

    Args:
        staging: Store the rows are read from and written to
        retry_on_conflict: Extra insert attempts when an insert collides but
            the winner cannot be re-read
    """

    def __init__(self, staging: StagingStore, *, retry_on_conflict: int = 1) -> None:
        self.staging = staging
        self.retry_on_conflict = retry_on_conflict

    async def get_or_create(
        self,
        entity: str,
        key_fields: Mapping[str, Any],
        attributes: Mapping[str, Any] | None = None,
    ) -> Resolved:
        """Return the row identified by ``key_fields``, creating it if absent.

        Args:
            entity: Entity kind, one of ENTITY_MODELS
            key_fields: Natural-key columns, already normalized
            attributes: Non-key columns used only when creating

        Raises:
            InvalidKeyError: A key field is missing or blank
            ConflictError: An insert collided and the winner could not be read
            TransactionError: Any other relational failure
        """
        model = ENTITY_MODELS.get(entity)
        if model is None:
            raise ValueError(f"Unknown entity kind: {entity}")
        for field, value in key_fields.items():
            if value is None or (isinstance(value, str) and not value.strip()):
                raise InvalidKeyError(f"{entity}.{field} is blank", component=COMPONENT)

        try:
            found = await self._lookup(model, key_fields)
            if found is not None:
                return Resolved(found, existing=True)

            for attempt in range(1 + self.retry_on_conflict):
                try:
                    new_id = await self._insert(model, key_fields, attributes or {})
                    logger.debug(f"Created {entity} {new_id} for {dict(key_fields)}")
                    return Resolved(new_id, existing=False)
                except IntegrityError:
                    logger.info(f"Concurrent create of {entity} {dict(key_fields)}, re-reading (attempt {attempt + 1})")
                found = await self._lookup(model, key_fields)
                if found is not None:
                    return Resolved(found, existing=True)
        except SQLAlchemyError as e:
            raise TransactionError(f"Resolving {entity} failed: {e}", component=COMPONENT) from e

        raise ConflictError(
            f"{entity} {dict(key_fields)} collided on insert but no winner was found",
            component=COMPONENT,
        )

    async def _lookup(self, model: type[Base], key_fields: Mapping[str, Any]) -> int | None:
        stmt = select(model.id).filter_by(**key_fields)
        async with self.staging.session() as session:
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def _insert(self, model: type[Base], key_fields: Mapping[str, Any], attributes: Mapping[str, Any]) -> int:
        async with self.staging.session() as session:
            async with session.begin():
                row = model(**attributes, **key_fields, sync_status=SyncStatus.PENDING.value)
                session.add(row)
                await session.flush()
                return row.id

    # Convenience wrappers

    async def resolve_institution(self, name: str, slug: str | None = None) -> Resolved:
        normalize_key(name)
        return await self.get_or_create("institution", {"slug": slugify(slug or name)}, {"name": name.strip()})

    async def resolve_company(
        self,
        institution_id: int,
        name: str,
        *,
        description: str | None = None,
        website: str | None = None,
        parent_company_id: int | None = None,
        raw_data: dict | None = None,
    ) -> Resolved:
        return await self.get_or_create(
            "company",
            {"institution_id": institution_id, "slug": slugify(name)},
            {
                "name": name.strip(),
                "description": _clean(description),
                "website": _clean(website),
                "parent_company_id": parent_company_id,
                "raw_data": raw_data,
            },
        )

    async def resolve_division(self, company_id: int, name: str) -> Resolved:
        return await self.get_or_create(
            "division",
            {"company_id": company_id, "slug": slugify(name)},
            {"name": name.strip()},
        )

    async def resolve_role(
        self,
        company_id: int,
        title: str,
        *,
        division_id: int | None = None,
        description: str | None = None,
        raw_data: dict | None = None,
    ) -> Resolved:
        return await self.get_or_create(
            "role",
            {"company_id": company_id, "normalized_key": normalize_key(title)},
            {
                "title": title.strip(),
                "division_id": division_id,
                "description": _clean(description),
                "raw_data": raw_data,
            },
        )

    async def resolve_skill(
        self,
        company_id: int,
        name: str,
        *,
        description: str | None = None,
        category: str | None = None,
    ) -> Resolved:
        return await self.get_or_create(
            "skill",
            {"company_id": company_id, "normalized_key": normalize_key(name)},
            {"name": name.strip(), "description": _clean(description), "category": _clean(category)},
        )

    async def resolve_capability(
        self,
        company_id: int,
        name: str,
        *,
        level: str | None = None,
        group_name: str | None = None,
        description: str | None = None,
        source_framework: str | None = None,
        behavioral_indicators: list[str] | None = None,
    ) -> Resolved:
        """Resolve a capability and, when a level is given, its level row."""
        resolved = await self.get_or_create(
            "capability",
            {"company_id": company_id, "normalized_key": normalize_key(name)},
            {
                "name": name.strip(),
                "group_name": _clean(group_name),
                "description": _clean(description),
                "source_framework": _clean(source_framework),
            },
        )
        level = _clean(level)
        if level:
            await self.get_or_create(
                "capability_level",
                {"capability_id": resolved.id, "level": level},
                {"summary": _clean(description), "behavioral_indicators": behavioral_indicators},
            )
        return resolved

    async def resolve_taxonomy(
        self,
        company_id: int,
        name: str,
        *,
        description: str | None = None,
        taxonomy_type: str = "core",
    ) -> Resolved:
        return await self.get_or_create(
            "taxonomy",
            {"company_id": company_id, "normalized_key": normalize_key(name)},
            {"name": name.strip(), "description": _clean(description), "taxonomy_type": taxonomy_type},
        )

    async def resolve_general_role(
        self,
        title: str,
        *,
        description: str | None = None,
        function_area: str | None = None,
        classification_level: str | None = None,
        embedding: list[float] | None = None,
    ) -> Resolved:
        return await self.get_or_create(
            "general_role",
            {"normalized_key": normalize_key(title)},
            {
                "title": title.strip(),
                "description": _clean(description),
                "function_area": _clean(function_area),
                "classification_level": _clean(classification_level),
                "embedding": embedding,
            },
        )

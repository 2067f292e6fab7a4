from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select

from etl.errors import ConflictError, InvalidKeyError
from etl.models import CapabilityLevel, Company
from etl.pipelines.resolver import EntityKeyResolver


async def _institution(resolver: EntityKeyResolver) -> int:
    return (await resolver.resolve_institution("NSW Government", "nsw-gov")).id


async def _company_count(staging) -> int:
    async with staging.session() as session:
        return (await session.execute(select(func.count()).select_from(Company))).scalar_one()


def test_get_or_create_is_idempotent(staging) -> None:
    resolver = EntityKeyResolver(staging)

    async def scenario():
        institution_id = await _institution(resolver)
        first = await resolver.resolve_company(institution_id, "Acme Corp")
        second = await resolver.resolve_company(institution_id, "  ACME   corp ")
        return first, second, await _company_count(staging)

    first, second, count = asyncio.run(scenario())

    assert first.existing is False
    assert second.existing is True
    assert first.id == second.id
    assert count == 1


def test_existing_rows_are_not_merged(staging) -> None:
    resolver = EntityKeyResolver(staging)

    async def scenario():
        institution_id = await _institution(resolver)
        await resolver.resolve_company(institution_id, "Acme Corp", description=None)
        resolved = await resolver.resolve_company(
            institution_id,
            "Acme Corp",
            description="Richer description from a later source",
            website="https://acme.example",
        )
        async with staging.session() as session:
            return resolved, await session.get(Company, resolved.id)

    resolved, company = asyncio.run(scenario())

    assert resolved.existing is True
    assert company.description is None
    assert company.website is None
    assert company.sync_status == "pending"


def test_blank_name_is_invalid_key(staging) -> None:
    resolver = EntityKeyResolver(staging)

    async def scenario():
        institution_id = await _institution(resolver)
        await resolver.resolve_company(institution_id, "   ")

    with pytest.raises(InvalidKeyError):
        asyncio.run(scenario())
    assert asyncio.run(_company_count(staging)) == 0


def test_blank_key_field_is_rejected_before_lookup(staging) -> None:
    resolver = EntityKeyResolver(staging)
    with pytest.raises(InvalidKeyError):
        asyncio.run(resolver.get_or_create("general_role", {"normalized_key": " "}, {"title": "x"}))


def test_unique_violation_rereads_winner(staging, monkeypatch) -> None:
    resolver = EntityKeyResolver(staging)
    institution_id = asyncio.run(_institution(resolver))
    winner = asyncio.run(resolver.resolve_company(institution_id, "Acme Corp"))

    original_lookup = resolver._lookup
    misses = {"left": 1}

    async def stale_lookup(model, key_fields):
        # Simulates a lookup that ran just before the other writer committed.
        if misses["left"]:
            misses["left"] -= 1
            return None
        return await original_lookup(model, key_fields)

    monkeypatch.setattr(resolver, "_lookup", stale_lookup)
    resolved = asyncio.run(resolver.resolve_company(institution_id, "Acme Corp"))

    assert resolved.id == winner.id
    assert resolved.existing is True
    assert asyncio.run(_company_count(staging)) == 1


def test_conflict_without_visible_winner_raises(staging, monkeypatch) -> None:
    resolver = EntityKeyResolver(staging, retry_on_conflict=1)
    institution_id = asyncio.run(_institution(resolver))
    asyncio.run(resolver.resolve_company(institution_id, "Acme Corp"))

    async def never_found(model, key_fields):
        return None

    monkeypatch.setattr(resolver, "_lookup", never_found)
    with pytest.raises(ConflictError):
        asyncio.run(resolver.resolve_company(institution_id, "Acme Corp"))


def test_concurrent_company_creation_yields_one_row(staging) -> None:
    first_pipeline = EntityKeyResolver(staging)
    second_pipeline = EntityKeyResolver(staging)

    async def scenario():
        institution_id = await _institution(first_pipeline)
        results = await asyncio.gather(
            first_pipeline.resolve_company(institution_id, "Acme Corp"),
            second_pipeline.resolve_company(institution_id, "Acme Corp"),
        )
        return results, await _company_count(staging)

    (a, b), count = asyncio.run(scenario())

    assert a.id == b.id
    assert count == 1
    assert [a.existing, b.existing].count(False) == 1


def test_capability_level_rows_are_ensured(staging) -> None:
    resolver = EntityKeyResolver(staging)

    async def scenario():
        institution_id = await _institution(resolver)
        company = await resolver.resolve_company(institution_id, "Service NSW")
        first = await resolver.resolve_capability(company.id, "Communicate Effectively", level="Adept")
        again = await resolver.resolve_capability(company.id, "communicate effectively", level="Adept")
        other = await resolver.resolve_capability(company.id, "Communicate Effectively", level="Advanced")
        async with staging.session() as session:
            levels = (
                await session.execute(
                    select(CapabilityLevel.level)
                    .where(CapabilityLevel.capability_id == first.id)
                    .order_by(CapabilityLevel.level)
                )
            ).scalars().all()
        return first, again, other, levels

    first, again, other, levels = asyncio.run(scenario())

    assert first.id == again.id == other.id
    assert levels == ["Adept", "Advanced"]


def test_roles_are_scoped_to_company(staging) -> None:
    resolver = EntityKeyResolver(staging)

    async def scenario():
        institution_id = await _institution(resolver)
        acme = await resolver.resolve_company(institution_id, "Acme Corp")
        globex = await resolver.resolve_company(institution_id, "Globex")
        return (
            await resolver.resolve_role(acme.id, "Policy Officer"),
            await resolver.resolve_role(globex.id, "Policy Officer"),
        )

    acme_role, globex_role = asyncio.run(scenario())
    assert acme_role.id != globex_role.id

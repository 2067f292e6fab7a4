from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import select

from etl.errors import DanglingReferenceError
from etl.models import JobSkill, RoleCapability, RoleSkill, Skill
from etl.pipelines.jobs import JobAttributes, JobKey, VersionedJobStore
from etl.pipelines.linker import GraphLinker, Link
from etl.pipelines.resolver import EntityKeyResolver


def _graph(staging) -> dict:
    async def create():
        resolver = EntityKeyResolver(staging)
        institution = await resolver.resolve_institution("NSW Government", "nsw-gov")
        company = await resolver.resolve_company(institution.id, "Department of Education")
        role = await resolver.resolve_role(company.id, "Policy Officer")
        skill = await resolver.resolve_skill(company.id, "Stakeholder engagement")
        capability = await resolver.resolve_capability(company.id, "Communicate and Influence Effectively")
        return {"company": company.id, "role": role.id, "skill": skill.id, "capability": capability.id}

    return asyncio.run(create())


async def _rows(staging, model):
    async with staging.session() as session:
        return list((await session.execute(select(model))).scalars())


def test_linking_twice_keeps_one_row(staging) -> None:
    ids = _graph(staging)
    linker = GraphLinker(staging)

    first = asyncio.run(linker.link(ids["role"], ids["skill"], "skill"))
    second = asyncio.run(linker.link(ids["role"], ids["skill"], "skill"))

    assert (first, second) == (True, False)
    assert asyncio.run(staging.count(RoleSkill)) == 1


def test_relinking_updates_level_in_place(staging) -> None:
    ids = _graph(staging)
    linker = GraphLinker(staging)

    asyncio.run(linker.link(ids["role"], ids["capability"], "capability", {"level": "intermediate"}))
    asyncio.run(linker.link(ids["role"], ids["capability"], "capability", {"level": "adept"}))

    (row,) = asyncio.run(_rows(staging, RoleCapability))
    assert row.level == "adept"
    assert row.capability_type == "core"


def test_capability_type_is_part_of_the_link_key(staging) -> None:
    ids = _graph(staging)
    linker = GraphLinker(staging)

    asyncio.run(linker.link(ids["role"], ids["capability"], "capability", {"level": "adept"}))
    asyncio.run(
        linker.link(
            ids["role"], ids["capability"], "capability", {"level": "advanced", "capability_type": "occupation_specific"}
        )
    )

    rows = asyncio.run(_rows(staging, RoleCapability))
    assert sorted((r.capability_type, r.level) for r in rows) == [
        ("core", "adept"),
        ("occupation_specific", "advanced"),
    ]


@pytest.mark.parametrize("relation", ["skill", "capability"])
def test_dangling_target_is_rejected_without_placeholder(staging, relation) -> None:
    ids = _graph(staging)
    linker = GraphLinker(staging)

    with pytest.raises(DanglingReferenceError):
        asyncio.run(linker.link(ids["role"], 9999, relation))

    assert asyncio.run(staging.count(RoleSkill)) == 0
    assert asyncio.run(staging.count(RoleCapability)) == 0
    assert asyncio.run(staging.count(Skill)) == 1


def test_dangling_role_is_rejected(staging) -> None:
    ids = _graph(staging)
    with pytest.raises(DanglingReferenceError):
        asyncio.run(GraphLinker(staging).link(9999, ids["skill"], "skill"))


def test_link_many_skips_dangling_links(staging) -> None:
    ids = _graph(staging)
    linker = GraphLinker(staging)
    links = [
        Link(ids["role"], ids["skill"], "skill"),
        Link(ids["role"], 4242, "skill"),
        Link(ids["role"], ids["capability"], "capability", {"level": "adept"}),
        Link(ids["role"], ids["skill"], "skill"),
    ]

    summary = asyncio.run(linker.link_many(links))

    assert summary.created == 2
    assert summary.updated == 1
    assert summary.total == 3
    assert [link.target_id for link in summary.dangling] == [4242]


def test_job_skill_links_are_idempotent(staging) -> None:
    ids = _graph(staging)
    job = asyncio.run(
        VersionedJobStore(staging).upsert(JobKey(ids["company"], "nswgov", "JOB-1"), JobAttributes(title="Policy Officer"))
    )
    linker = GraphLinker(staging)

    assert asyncio.run(linker.link_job_skill(job.job_id, ids["skill"])) is True
    assert asyncio.run(linker.link_job_skill(job.job_id, ids["skill"])) is False
    assert asyncio.run(staging.count(JobSkill)) == 1

    with pytest.raises(DanglingReferenceError):
        asyncio.run(linker.link_job_skill(job.job_id + 100, ids["skill"]))


def test_unknown_relation_is_a_programming_error(staging) -> None:
    ids = _graph(staging)
    with pytest.raises(ValueError):
        asyncio.run(GraphLinker(staging).link(ids["role"], ids["skill"], "friend"))


def test_links_join_the_callers_transaction(staging) -> None:
    ids = _graph(staging)
    linker = GraphLinker(staging)

    async def link_then_fail():
        async with staging.transaction() as session:
            summary = await linker.link_many(
                [Link(ids["role"], ids["skill"], "skill"), Link(ids["role"], 4242, "skill")],
                session=session,
            )
            assert summary.created == 1
            assert len(summary.dangling) == 1
            raise RuntimeError("record failed later")

    with pytest.raises(RuntimeError):
        asyncio.run(link_then_fail())
    assert asyncio.run(_rows(staging, RoleSkill)) == []

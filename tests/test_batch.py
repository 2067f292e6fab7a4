from __future__ import annotations

import asyncio

import httpx
import pytest
from sqlalchemy import select

from conftest import QUERY, FakeAnalyzer, FakeEmbedder, FakeFetcher
from etl.config import DocumentSettings, StagingDatabaseSettings
from etl.db import StagingStore, make_engine
from etl.errors import ConfigurationError, TransactionError
from etl.fetch import HttpDocumentFetcher
from etl.models import Capability, Company, Job, JobDocument, JobHistory, JobSkill, Role, RoleCapability, RoleTaxonomy
from etl.pipelines.batch import BatchOrchestrator
from etl.pipelines.documents import DocumentIngestor
from etl.pipelines.jobs import VersionedJobStore
from etl.pipelines.linker import GraphLinker
from etl.pipelines.resolver import EntityKeyResolver
from etl.pipelines.similarity import GeneralRoleCanonicalizer, SimilarityMatcher


def _orchestrator(staging, live, institution, *, fetcher=None, embedder=None, batch_size=10) -> BatchOrchestrator:
    resolver = EntityKeyResolver(staging)
    canonicalizer = None
    if embedder is not None:
        canonicalizer = GeneralRoleCanonicalizer(staging, SimilarityMatcher(staging), resolver, embedder)
    return BatchOrchestrator(
        staging,
        live,
        resolver,
        DocumentIngestor(staging, fetcher or FakeFetcher(), FakeAnalyzer()),
        VersionedJobStore(staging),
        GraphLinker(staging),
        canonicalizer,
        institution=institution,
        batch_size=batch_size,
        max_concurrency=2,
    )


def _record(n: int, **overrides) -> dict:
    record = {
        "original_id": f"JOB-{n}",
        "title": f"Policy Officer {n}",
        "company": "Department of Education",
        "close_date": "2025-03-01",
        "location": "Sydney",
    }
    record.update(overrides)
    return record


async def _all(staging, model):
    async with staging.session() as session:
        return list((await session.execute(select(model))).scalars())


@pytest.mark.parametrize("bad_index", [0, 2, 4])
@pytest.mark.parametrize("bad_title, kind, component, entity, source", [
    ("", "validation_error", "records", "record", "?"),
    ("   ", "invalid_key", "resolver", "role", "nswgov"),
])
def test_failing_record_does_not_affect_siblings(
    staging, live, institution, bad_index, bad_title, kind, component, entity, source,
) -> None:
    records = [_record(i) for i in range(5)]
    records[bad_index]["title"] = bad_title

    report = asyncio.run(_orchestrator(staging, live, institution, batch_size=2).store_batch(records))

    assert report.succeeded == 4
    assert report.failed == 1
    (failure,) = report.errors
    assert failure.record_id == f"{source}:JOB-{bad_index}"
    assert failure.kind == kind
    assert failure.component == component
    assert failure.entity == entity
    assert report.counts.failures == {entity: 1}
    jobs = asyncio.run(_all(staging, Job))
    assert sorted(job.original_id for job in jobs) == sorted(f"JOB-{i}" for i in range(5) if i != bad_index)


def test_record_fields_are_stored(staging, live, institution) -> None:
    record = _record(
        1,
        source_id="iworkfor",
        close_date="Ongoing",
        company={"name": "Department of Education", "parent": "Education Cluster", "website": "https://education.nsw.gov.au"},
        division="Schools Policy",
        capabilities=[{"name": "Communicate Effectively", "level": "Adept"}],
        skills=["Policy development", {"name": "Stakeholder engagement", "category": "Relationships"}],
        taxonomies=["Policy"],
    )

    report = asyncio.run(_orchestrator(staging, live, institution).store_batch([record]))

    assert report.failed == 0
    (job,) = asyncio.run(_all(staging, Job))
    assert job.source_id == "iworkfor"
    assert job.close_date is None
    assert job.locations == ["Sydney"]
    companies = {c.name: c for c in asyncio.run(_all(staging, Company))}
    assert companies["Department of Education"].parent_company_id == companies["Education Cluster"].id
    (capability,) = asyncio.run(_all(staging, Capability))
    assert capability.group_name == "Relationships"
    assert capability.source_framework == "NSW Public Sector Capability Framework"
    (link,) = asyncio.run(_all(staging, RoleCapability))
    assert link.level == "adept"
    assert asyncio.run(staging.count(JobSkill)) == 2
    assert asyncio.run(staging.count(RoleTaxonomy)) == 1

    counts = report.counts
    assert (counts.companies, counts.divisions, counts.roles) == (2, 1, 1)
    assert (counts.jobs_created, counts.jobs_updated) == (1, 0)
    assert (counts.skills, counts.capabilities, counts.taxonomies) == (2, 1, 1)
    assert counts.links == 6


def test_source_defaults_to_institution(staging, live, institution) -> None:
    asyncio.run(_orchestrator(staging, live, institution).store_batch([_record(1)]))
    (job,) = asyncio.run(_all(staging, Job))
    assert job.external_id == "nswgov:JOB-1"


def test_rerun_versions_jobs_without_duplicating_entities(staging, live, institution) -> None:
    records = [_record(1, title="Policy Officer"), _record(2, title="policy officer ")]
    orchestrator = _orchestrator(staging, live, institution)

    first = asyncio.run(orchestrator.store_batch(records))
    second = asyncio.run(orchestrator.store_batch(records))

    assert (first.counts.companies, first.counts.roles, first.counts.jobs_created) == (1, 1, 2)
    assert (second.counts.companies, second.counts.roles) == (0, 0)
    assert (second.counts.jobs_created, second.counts.jobs_updated) == (0, 2)
    assert asyncio.run(staging.count(Role)) == 1
    assert sorted(job.version for job in asyncio.run(_all(staging, Job))) == [2, 2]


def test_abort_skips_remaining_chunks(staging, live, institution) -> None:
    orchestrator = None

    class AbortingFetcher(FakeFetcher):
        async def fetch(self, url):
            orchestrator.abort()
            return await super().fetch(url)

    fetcher = AbortingFetcher({"https://x.test/1.txt": "Role description"})
    orchestrator = _orchestrator(staging, live, institution, fetcher=fetcher, batch_size=2)
    records = [_record(i) for i in range(5)]
    records[1]["documents"] = [{"url": "https://x.test/1.txt"}]

    report = asyncio.run(orchestrator.store_batch(records))

    assert report.aborted is True
    assert report.succeeded == 2
    assert report.skipped == 3
    assert asyncio.run(staging.count(Job)) == 2


def test_drift_reports_pending_rows(staging, live, institution) -> None:
    report = asyncio.run(_orchestrator(staging, live, institution).store_batch([_record(1), _record(2)]))

    assert report.drift.error is None
    assert report.drift.tables["jobs"].staging == 2
    assert report.drift.tables["jobs"].live == 0
    assert report.drift.tables["jobs"].pending == 2
    assert report.drift.total_pending >= 2


def test_general_roles_are_linked(staging, live, institution) -> None:
    embedder = FakeEmbedder(default=QUERY)
    records = [_record(1, title="Policy Officer"), _record(2, title="Senior Policy Officer")]

    report = asyncio.run(_orchestrator(staging, live, institution, embedder=embedder, batch_size=1).store_batch(records))

    assert report.counts.general_roles_linked == 2
    roles = asyncio.run(_all(staging, Role))
    assert len({role.general_role_id for role in roles}) == 1


def test_malformed_document_url_only_fails_that_document(staging, live, institution) -> None:
    transport = httpx.MockTransport(
        lambda request: httpx.Response(200, content=b"Lead policy development", headers={"content-type": "text/plain"})
    )
    fetcher = HttpDocumentFetcher(DocumentSettings(), client=httpx.AsyncClient(transport=transport))
    record = _record(1, documents=[{"url": "https://ok.test/a.txt"}, {"url": "http://[::1"}])

    report = asyncio.run(_orchestrator(staging, live, institution, fetcher=fetcher).store_batch([record]))

    assert (report.succeeded, report.failed) == (1, 0)
    documents = {d.document_url: d for d in asyncio.run(_all(staging, JobDocument))}
    assert documents["https://ok.test/a.txt"].extraction_status == "extracted"
    assert documents["http://[::1"].extraction_status == "failed"
    assert report.counts.documents == 2


def _failing_linker(orchestrator, monkeypatch) -> None:
    async def broken_link_many(links, *, session=None):
        raise TransactionError("disk full", component="linker")

    monkeypatch.setattr(orchestrator.linker, "link_many", broken_link_many)


def test_late_failure_leaves_no_job_behind(staging, live, institution, monkeypatch) -> None:
    orchestrator = _orchestrator(staging, live, institution, fetcher=FakeFetcher({"https://x.test/1.txt": "Role description"}))
    _failing_linker(orchestrator, monkeypatch)
    record = _record(1, documents=[{"url": "https://x.test/1.txt"}], skills=["Policy development"])

    report = asyncio.run(orchestrator.store_batch([record]))

    assert (report.succeeded, report.failed) == (0, 1)
    (failure,) = report.errors
    assert (failure.component, failure.kind, failure.entity) == ("linker", "transaction_error", "link")
    assert report.counts.failures == {"link": 1}
    assert (report.counts.jobs_created, report.counts.documents) == (0, 0)
    assert asyncio.run(staging.count(Job)) == 0
    assert asyncio.run(staging.count(JobDocument)) == 0
    assert asyncio.run(staging.count(JobSkill)) == 0


def test_failed_rerun_keeps_the_stored_version(staging, live, institution, monkeypatch) -> None:
    fetcher = FakeFetcher({"https://x.test/1.txt": "Role description"})
    asyncio.run(_orchestrator(staging, live, institution).store_batch([_record(1)]))
    orchestrator = _orchestrator(staging, live, institution, fetcher=fetcher)
    _failing_linker(orchestrator, monkeypatch)
    record = _record(1, title="Policy Officer 1", documents=[{"url": "https://x.test/1.txt"}])

    first = asyncio.run(orchestrator.store_batch([record]))
    second = asyncio.run(orchestrator.store_batch([record]))

    assert (first.failed, second.failed) == (1, 1)
    (job,) = asyncio.run(_all(staging, Job))
    assert job.version == 1
    assert asyncio.run(staging.count(JobHistory)) == 0
    assert asyncio.run(staging.count(JobDocument)) == 0


def test_unreachable_staging_is_a_configuration_error(tmp_path, live, institution) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path / 'missing' / 'staging.db'}"
    staging = StagingStore(make_engine(StagingDatabaseSettings(url=url)))

    with pytest.raises(ConfigurationError):
        asyncio.run(_orchestrator(staging, live, institution).store_batch([_record(1)]))

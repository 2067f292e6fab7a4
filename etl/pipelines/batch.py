"""Batch orchestration of processed records into the staging store.

Records are processed in fixed-size chunks. Inside a chunk records run
concurrently (bounded), while each record runs in two phases:

    resolve company/division/role -> fetch and analyse documents
    -> resolve skills/capabilities/taxonomies -> choose a general role

    then, in one transaction: upsert job -> store documents
    -> write links -> assign the general role

Reference data resolved in the first phase is committed as it is found and
is safe to keep. Everything written for the job itself commits or rolls back
together, so a failed record never leaves a bumped version behind. A failing
record is recorded in the report and never affects its siblings.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any, Iterable, Mapping

from pydantic import ValidationError as RecordValidationError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ai.analysis import AnalysisResult
from config.capability_framework import CAPABILITY_FRAMEWORK, FRAMEWORK_NAME
from ..config import InstitutionSettings
from ..db import LiveStore, StagingStore
from ..errors import ConfigurationError, ConflictError, PipelineError, TransactionError, ValidationError
from ..models import (
    Capability,
    Company,
    GeneralRole,
    Job,
    JobDocument,
    JobHistory,
    Role,
    RoleCapability,
    RoleSkill,
    RoleTaxonomy,
    Skill,
    Taxonomy,
    utcnow,
)
from ..records import ProcessedRecord
from .documents import DocumentIngestor, PreparedDocument
from .jobs import JobAttributes, JobKey, JobWriteResult, VersionedJobStore
from .linker import GraphLinker, Link
from .normalization import normalize_key
from .resolver import EntityKeyResolver, Resolved
from .similarity import GeneralRoleCanonicalizer, GeneralRoleChoice

logger = logging.getLogger(__name__)

# Tables compared between staging and live after each run.
DRIFT_TABLES = {
    "companies": Company,
    "roles": Role,
    "general_roles": GeneralRole,
    "jobs": Job,
    "jobs_history": JobHistory,
    "job_documents": JobDocument,
    "skills": Skill,
    "capabilities": Capability,
    "taxonomies": Taxonomy,
    "role_skills": RoleSkill,
    "role_capabilities": RoleCapability,
    "role_taxonomies": RoleTaxonomy,
}

_FRAMEWORK_BY_KEY = {normalize_key(entry["name"]): entry for entry in CAPABILITY_FRAMEWORK}


@dataclass(frozen=True)
class RecordFailure:
    """One failed record: which record, where it failed and why."""
    record_id: str
    component: str
    kind: str
    message: str
    entity: str = "record"


@dataclass
class EntityCounts:
    """Rows created (or versioned, for jobs) during one run, and failed records per entity kind."""
    companies: int = 0
    divisions: int = 0
    roles: int = 0
    jobs_created: int = 0
    jobs_updated: int = 0
    documents: int = 0
    skills: int = 0
    capabilities: int = 0
    taxonomies: int = 0
    links: int = 0
    dangling_links: int = 0
    general_roles_linked: int = 0
    failures: dict[str, int] = field(default_factory=dict)

    @property
    def jobs(self) -> int:
        return self.jobs_created + self.jobs_updated

    def add_resolved(self, kind: str, resolved: Resolved) -> None:
        if not resolved.existing:
            setattr(self, kind, getattr(self, kind) + 1)

    def add_failure(self, entity: str) -> None:
        self.failures[entity] = self.failures.get(entity, 0) + 1

    def merge(self, other: EntityCounts) -> None:
        for item in fields(self):
            if item.name == "failures":
                for entity, count in other.failures.items():
                    self.failures[entity] = self.failures.get(entity, 0) + count
            else:
                setattr(self, item.name, getattr(self, item.name) + getattr(other, item.name))


@dataclass(frozen=True)
class TableDrift:
    staging: int
    live: int

    @property
    def pending(self) -> int:
        return self.staging - self.live


@dataclass
class SyncDrift:
    """Staging vs live row counts per table."""
    tables: dict[str, TableDrift] = field(default_factory=dict)
    error: str | None = None

    @property
    def total_pending(self) -> int:
        return sum(t.pending for t in self.tables.values())


@dataclass
class BatchReport:
    succeeded: int = 0
    failed: int = 0
    errors: list[RecordFailure] = field(default_factory=list)
    counts: EntityCounts = field(default_factory=EntityCounts)
    drift: SyncDrift = field(default_factory=SyncDrift)
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime | None = None
    aborted: bool = False
    skipped: int = 0

    @property
    def total(self) -> int:
        return self.succeeded + self.failed


@dataclass
class _RecordRun:
    record_id: str
    stage: str = "records"
    entity: str = "record"


@dataclass
class _LinkTargets:
    links: list[Link] = field(default_factory=list)
    skill_ids: list[int] = field(default_factory=list)


class BatchOrchestrator:
    """Runs the full pipeline for a batch of processed records.

    Args:
        staging: Store all writes go to
        live: Read-only store used for drift reporting
        resolver, documents, jobs, linker: Pipeline components
        canonicalizer: Optional general-role canonicalisation step
        institution: Tenant the companies belong to
        batch_size: Records per chunk
        max_concurrency: Records in flight within a chunk
    """

    def __init__(
        self,
        staging: StagingStore,
        live: LiveStore,
        resolver: EntityKeyResolver,
        documents: DocumentIngestor,
        jobs: VersionedJobStore,
        linker: GraphLinker,
        canonicalizer: GeneralRoleCanonicalizer | None = None,
        *,
        institution: InstitutionSettings,
        batch_size: int = 10,
        max_concurrency: int = 4,
    ) -> None:
        self.staging = staging
        self.live = live
        self.resolver = resolver
        self.documents = documents
        self.jobs = jobs
        self.linker = linker
        self.canonicalizer = canonicalizer
        self.institution = institution
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self._abort = asyncio.Event()

    def abort(self) -> None:
        """Stop after the chunk currently running; later chunks are skipped."""
        logger.warning("Batch abort requested")
        self._abort.set()

    async def store_batch(self, records: Iterable[ProcessedRecord | Mapping[str, Any]]) -> BatchReport:
        """Store every record, returning a report. Only configuration errors raise.

        Raises:
            ConfigurationError: Staging store unreachable or institution unusable
        """
        self._abort.clear()
        report = BatchReport()
        records = list(records)

        await self.staging.ping()
        try:
            institution = await self.resolver.resolve_institution(self.institution.name, self.institution.slug)
        except PipelineError as e:
            raise ConfigurationError(f"Institution {self.institution.slug!r} could not be resolved: {e}") from e

        logger.info(f"Storing batch of {len(records)} records in chunks of {self.batch_size}")
        semaphore = asyncio.Semaphore(self.max_concurrency)

        for start in range(0, len(records), self.batch_size):
            if self._abort.is_set():
                report.aborted = True
                report.skipped = len(records) - start
                logger.warning(f"Batch aborted, skipping {report.skipped} records")
                break
            chunk = records[start:start + self.batch_size]

            async def bounded(index: int, raw: ProcessedRecord | Mapping[str, Any]) -> RecordFailure | None:
                async with semaphore:
                    return await self._guarded(index, raw, institution.id, report.counts)

            outcomes = await asyncio.gather(*(bounded(start + i, raw) for i, raw in enumerate(chunk)))
            for failure in outcomes:
                if failure is None:
                    report.succeeded += 1
                else:
                    report.failed += 1
                    report.errors.append(failure)
                    report.counts.add_failure(failure.entity)
            logger.info(f"Chunk {start // self.batch_size + 1}: {report.succeeded} succeeded, {report.failed} failed so far")

        report.drift = await self.sync_drift()
        report.finished_at = utcnow()
        logger.info(
            f"Batch finished: {report.succeeded} succeeded, {report.failed} failed"
            f"{' (aborted)' if report.aborted else ''}"
        )
        return report

    async def sync_drift(self) -> SyncDrift:
        """Compare staging and live row counts; never raises."""
        drift = SyncDrift()
        try:
            for name, model in DRIFT_TABLES.items():
                drift.tables[name] = TableDrift(
                    staging=await self.staging.count(model),
                    live=await self.live.count(model),
                )
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Sync drift unavailable: {e}")
            drift.error = str(e)
        return drift

    async def _guarded(
        self,
        index: int,
        raw: ProcessedRecord | Mapping[str, Any],
        institution_id: int,
        counts: EntityCounts,
    ) -> RecordFailure | None:
        run = _RecordRun(record_id=_raw_record_id(index, raw))
        try:
            record = raw if isinstance(raw, ProcessedRecord) else ProcessedRecord.model_validate(raw)
            if record.source_id is None:
                record = record.model_copy(update={"source_id": self.institution.source_id})
            run.record_id = record.record_id
            await self._store_record(record, institution_id, counts, run)
            return None
        except RecordValidationError as e:
            logger.error(f"Record {run.record_id} is malformed: {e}")
            return RecordFailure(run.record_id, run.stage, ValidationError.kind, str(e), run.entity)
        except PipelineError as e:
            logger.error(f"Record {run.record_id} failed in {run.stage}: {e}", exc_info=True)
            return RecordFailure(run.record_id, e.component or run.stage, e.kind, e.message, run.entity)
        except Exception as e:
            logger.error(f"Record {run.record_id} failed unexpectedly in {run.stage}: {e}", exc_info=True)
            return RecordFailure(run.record_id, run.stage, TransactionError.kind, f"{type(e).__name__}: {e}", run.entity)

    async def _store_record(
        self,
        record: ProcessedRecord,
        institution_id: int,
        counts: EntityCounts,
        run: _RecordRun,
    ) -> None:
        run.stage, run.entity = "resolver", "company"
        parent_id = None
        if record.company.parent:
            parent = await self.resolver.resolve_company(institution_id, record.company.parent)
            counts.add_resolved("companies", parent)
            parent_id = parent.id
        company = await self.resolver.resolve_company(
            institution_id,
            record.company.name,
            description=record.company.description,
            website=record.company.website,
            parent_company_id=parent_id,
            raw_data=record.company.model_dump(),
        )
        counts.add_resolved("companies", company)

        division_id = None
        if record.division and record.division.strip():
            run.entity = "division"
            division = await self.resolver.resolve_division(company.id, record.division)
            counts.add_resolved("divisions", division)
            division_id = division.id

        run.entity = "role"
        role = await self.resolver.resolve_role(
            company.id,
            record.title,
            division_id=division_id,
            description=record.description,
            raw_data=record.raw_payload,
        )
        counts.add_resolved("roles", role)

        run.stage, run.entity = "documents", "document"
        prepared = await self.documents.prepare(record.documents)
        analysis = AnalysisResult(capabilities=record.capabilities, skills=record.skills)
        for document in prepared:
            analysis = analysis.merge(document.analysis)

        run.stage = "linker"
        targets = await self._resolve_link_targets(record, company.id, role.id, analysis, counts, run)

        choice = None
        if self.canonicalizer is not None:
            run.stage, run.entity = "similarity", "general_role"
            choice = await self.canonicalizer.choose(role.id)

        key = JobKey(company.id, record.source_id, record.original_id)
        attributes = JobAttributes(
            title=record.title.strip(),
            description=record.description,
            role_id=role.id,
            division_id=division_id,
            open_date=record.open_date,
            close_date=record.close_date,
            job_type=record.job_type,
            remuneration=record.remuneration,
            source_url=record.source_url,
            locations=record.locations,
            raw_data=record.raw_payload,
        )
        try:
            written = await self._write_record(key, attributes, prepared, targets, choice, counts, run)
        except ConflictError as e:
            logger.info(f"Record {record.record_id} lost a concurrent write in {run.stage}, retrying once: {e}")
            written = await self._write_record(key, attributes, prepared, targets, choice, counts, run)

        logger.info(f"Stored record {record.record_id} as job {written.job_id} v{written.version}")

    async def _write_record(
        self,
        key: JobKey,
        attributes: JobAttributes,
        prepared: list[PreparedDocument],
        targets: _LinkTargets,
        choice: GeneralRoleChoice | None,
        counts: EntityCounts,
        run: _RecordRun,
    ) -> JobWriteResult:
        """Write the job, its documents and its links in one transaction.

        Counts are merged only after the commit, so a rolled back attempt
        leaves no trace in the report either.
        """
        local = EntityCounts()
        try:
            async with self.staging.transaction() as session:
                run.stage, run.entity = "job_store", "job"
                job = await self.jobs.upsert(key, attributes, session=session)
                if job.created:
                    local.jobs_created += 1
                else:
                    local.jobs_updated += 1

                run.stage, run.entity = "documents", "document"
                stored = await self.documents.store(job.job_id, prepared, session=session)
                local.documents += len(stored.stored)

                run.stage, run.entity = "linker", "link"
                summary = await self.linker.link_many(targets.links, session=session)
                for skill_id in targets.skill_ids:
                    if await self.linker.link_job_skill(job.job_id, skill_id, session=session):
                        summary.created += 1
                local.links += summary.created
                local.dangling_links += len(summary.dangling)

                if choice is not None:
                    run.stage, run.entity = "similarity", "general_role"
                    await self.canonicalizer.assign(choice, session=session)
                    local.general_roles_linked += 1
        except IntegrityError as e:
            raise ConflictError(f"Record write collided on commit: {e}", component=run.stage) from e
        except SQLAlchemyError as e:
            raise TransactionError(f"Record write failed on commit: {e}", component=run.stage) from e

        counts.merge(local)
        return job

    async def _resolve_link_targets(
        self,
        record: ProcessedRecord,
        company_id: int,
        role_id: int,
        analysis: AnalysisResult,
        counts: EntityCounts,
        run: _RecordRun,
    ) -> _LinkTargets:
        targets = _LinkTargets()

        run.entity = "capability"
        for candidate in analysis.capabilities:
            framework = _FRAMEWORK_BY_KEY.get(normalize_key(candidate.name), {})
            capability = await self.resolver.resolve_capability(
                company_id,
                candidate.name,
                level=candidate.level,
                group_name=framework.get("group"),
                description=candidate.description or framework.get("description"),
                source_framework=FRAMEWORK_NAME if framework else None,
            )
            counts.add_resolved("capabilities", capability)
            targets.links.append(Link(
                role_id,
                capability.id,
                "capability",
                {"capability_type": candidate.capability_type, "level": candidate.level},
            ))

        run.entity = "skill"
        for candidate in analysis.skills:
            skill = await self.resolver.resolve_skill(
                company_id,
                candidate.name,
                description=candidate.description,
                category=candidate.category,
            )
            counts.add_resolved("skills", skill)
            targets.skill_ids.append(skill.id)
            targets.links.append(Link(role_id, skill.id, "skill"))

        run.entity = "taxonomy"
        for ref in record.taxonomies:
            taxonomy = await self.resolver.resolve_taxonomy(
                company_id,
                ref.name,
                description=ref.description,
                taxonomy_type=ref.taxonomy_type,
            )
            counts.add_resolved("taxonomies", taxonomy)
            targets.links.append(Link(role_id, taxonomy.id, "taxonomy"))
        return targets


def _raw_record_id(index: int, raw: ProcessedRecord | Mapping[str, Any]) -> str:
    if isinstance(raw, ProcessedRecord):
        return raw.record_id
    if isinstance(raw, Mapping) and raw.get("original_id"):
        return f"{raw.get('source_id') or '?'}:{raw['original_id']}"
    return f"#{index}"

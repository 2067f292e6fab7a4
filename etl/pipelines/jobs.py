"""Versioned job persistence with an append-only history.

Every write to an existing job first records the pre-transition snapshot in
``jobs_history`` and then bumps ``jobs.version``, both in one transaction.
The live row therefore always carries ``max(history.version) + 1``.
"""
from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ..db import StagingStore
from ..errors import ConflictError, DanglingReferenceError, InvalidKeyError, TransactionError
from ..models import ChangeType, Job, JobHistory, SyncStatus, utcnow

logger = logging.getLogger(__name__)

COMPONENT = "job_store"


@dataclass(frozen=True)
class JobKey:
    """Natural key of a job posting."""
    company_id: int
    source_id: str
    original_id: str

    def validate(self) -> None:
        if not self.source_id or not self.source_id.strip():
            raise InvalidKeyError("job source_id is blank", component=COMPONENT)
        if not self.original_id or not self.original_id.strip():
            raise InvalidKeyError("job original_id is blank", component=COMPONENT)


@dataclass
class JobAttributes:
    """Mutable, versioned attributes of a job."""
    title: str
    description: str | None = None
    role_id: int | None = None
    division_id: int | None = None
    open_date: date | None = None
    close_date: date | None = None
    job_type: str | None = None
    remuneration: str | None = None
    source_url: str | None = None
    locations: list[str] = field(default_factory=list)
    raw_data: dict | None = None


@dataclass(frozen=True)
class JobWriteResult:
    """Outcome of one versioned write."""
    job_id: int
    version: int
    created: bool
    changed_fields: list[str] = field(default_factory=list)


def _jsonable(value: Any) -> Any:
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return value


def snapshot_of(job: Job) -> dict[str, Any]:
    """Full denormalised copy of a job row."""
    return {column.key: _jsonable(getattr(job, column.key)) for column in Job.__table__.columns}


class VersionedJobStore:
    """Creates, updates and archives jobs with full version history.

    Args:
        staging: Store jobs are written to
        created_by: Recorded on every history row
    """

    def __init__(self, staging: StagingStore, *, created_by: str = "etl") -> None:
        self.staging = staging
        self.created_by = created_by

    async def upsert(
        self,
        key: JobKey,
        attributes: JobAttributes,
        *,
        session: AsyncSession | None = None,
    ) -> JobWriteResult:
        """Insert a new job at version 1, or version the existing one.

        The version increments on every call, including calls where no
        attribute changed. With ``session`` the write joins the caller's
        transaction and a lost insert race surfaces as ConflictError;
        without it the write commits on its own and retries that race once.

        Raises:
            InvalidKeyError: Blank source or original id
            ConflictError: A concurrent writer changed or created the row first
            TransactionError: Any other relational failure; nothing is written
        """
        key.validate()
        if not attributes.title or not attributes.title.strip():
            raise InvalidKeyError("job title is blank", component=COMPONENT)

        values = asdict(attributes)
        try:
            if session is not None:
                return await self._upsert_in(session, key, values)
            try:
                return await self._upsert_once(key, values)
            except IntegrityError:
                # Lost a concurrent insert of the same key; the row exists now.
                logger.info(f"Concurrent insert of job {key}, retrying as update")
                return await self._upsert_once(key, values)
        except IntegrityError as e:
            raise ConflictError(f"Job {key} was created concurrently", component=COMPONENT) from e
        except StaleDataError as e:
            raise ConflictError(f"Job {key} was modified concurrently", component=COMPONENT) from e
        except SQLAlchemyError as e:
            raise TransactionError(f"Job write failed for {key}: {e}", component=COMPONENT) from e

    async def _upsert_once(self, key: JobKey, values: dict[str, Any]) -> JobWriteResult:
        async with self.staging.transaction() as session:
            return await self._upsert_in(session, key, values)

    async def _upsert_in(self, session: AsyncSession, key: JobKey, values: dict[str, Any]) -> JobWriteResult:
        job = await self._locked_job(session, key)
        if job is None:
            now = utcnow()
            job = Job(
                company_id=key.company_id,
                source_id=key.source_id,
                original_id=key.original_id,
                version=1,
                is_archived=False,
                first_seen_at=now,
                last_updated_at=now,
                sync_status=SyncStatus.PENDING.value,
                **values,
            )
            session.add(job)
            await session.flush()
            logger.info(f"Created job {job.id} ({key.source_id}:{key.original_id})")
            return JobWriteResult(job.id, 1, created=True)

        changed = [name for name, value in values.items() if getattr(job, name) != value]
        session.add(self._history_row(job, ChangeType.UPDATE, changed))
        self._apply(job, values)
        await session.flush()
        logger.info(f"Updated job {job.id} to version {job.version} (changed: {changed or 'none'})")
        return JobWriteResult(job.id, job.version, created=False, changed_fields=changed)

    async def archive(self, job_id: int, reason: str | None = None) -> JobWriteResult:
        """Mark a job archived, recording the transition in history.

        Archiving an already archived job is still a recorded transition.

        Raises:
            DanglingReferenceError: No job with this id
            ConflictError: A concurrent writer changed the row first
            TransactionError: Any other relational failure
        """
        try:
            async with self.staging.session() as session:
                async with session.begin():
                    stmt = select(Job).where(Job.id == job_id).with_for_update()
                    job = (await session.execute(stmt)).scalar_one_or_none()
                    if job is None:
                        raise DanglingReferenceError(f"Job {job_id} does not exist", component=COMPONENT)
                    session.add(self._history_row(job, ChangeType.ARCHIVE, ["is_archived"], reason))
                    self._apply(job, {"is_archived": True})
                    await session.flush()
                    logger.info(f"Archived job {job_id} at version {job.version}")
                    return JobWriteResult(job.id, job.version, created=False, changed_fields=["is_archived"])
        except StaleDataError as e:
            raise ConflictError(f"Job {job_id} was modified concurrently", component=COMPONENT) from e
        except SQLAlchemyError as e:
            raise TransactionError(f"Archiving job {job_id} failed: {e}", component=COMPONENT) from e

    async def get(self, key: JobKey) -> Job | None:
        async with self.staging.session() as session:
            stmt = select(Job).filter_by(
                company_id=key.company_id,
                source_id=key.source_id,
                original_id=key.original_id,
            )
            return (await session.execute(stmt)).scalar_one_or_none()

    async def history(self, job_id: int) -> list[JobHistory]:
        """History rows for a job, oldest first."""
        async with self.staging.session() as session:
            stmt = select(JobHistory).where(JobHistory.job_id == job_id).order_by(JobHistory.version)
            return list((await session.execute(stmt)).scalars())

    async def _locked_job(self, session: AsyncSession, key: JobKey) -> Job | None:
        stmt = (
            select(Job)
            .filter_by(company_id=key.company_id, source_id=key.source_id, original_id=key.original_id)
            .with_for_update()
        )
        return (await session.execute(stmt)).scalar_one_or_none()

    def _history_row(
        self,
        job: Job,
        change_type: ChangeType,
        changed_fields: list[str],
        reason: str | None = None,
    ) -> JobHistory:
        return JobHistory(
            job_id=job.id,
            version=job.version,
            company_id=job.company_id,
            role_id=job.role_id,
            division_id=job.division_id,
            source_id=job.source_id,
            original_id=job.original_id,
            title=job.title,
            snapshot=snapshot_of(job),
            changed_fields=changed_fields,
            change_type=change_type.value,
            change_reason=reason,
            created_by=self.created_by,
        )

    def _apply(self, job: Job, values: dict[str, Any]) -> None:
        for name, value in values.items():
            setattr(job, name, value)
        # The mapper checks the old version in the UPDATE's WHERE clause.
        job.version = job.version + 1
        job.last_updated_at = utcnow()
        job.sync_status = SyncStatus.PENDING.value
        job.last_synced_at = None

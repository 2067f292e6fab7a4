"""Document ingestion: fetch, classify, extract, persist, analyse.

One document's failure never aborts its siblings. Fetch and extraction
failures are stored as rows with empty parsed content; analysis failures
just mean no candidates from that document.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ai.analysis import AnalysisResult, TextAnalyzer
from ..db import StagingStore
from ..errors import CollaboratorError, ConflictError, DanglingReferenceError, ParseError, TransactionError
from ..fetch import DocumentFetcher, FetchedDocument
from ..models import Job, JobDocument, SyncStatus
from ..parsers import DocumentType, ExtractionStatus, detect_document_type, extract_text
from ..records import DocumentRef
from .normalization import normalize_text

logger = logging.getLogger(__name__)

COMPONENT = "documents"


@dataclass
class DocumentOutcome:
    """What happened to one document."""
    url: str
    document_id: int | None
    document_type: str
    extraction_status: str
    text_length: int = 0
    error: str | None = None


@dataclass
class DocumentBatchResult:
    stored: list[DocumentOutcome] = field(default_factory=list)
    analysis: AnalysisResult = field(default_factory=AnalysisResult)

    @property
    def failed(self) -> list[DocumentOutcome]:
        return [d for d in self.stored if d.extraction_status == ExtractionStatus.FAILED.value]


@dataclass
class PreparedDocument:
    """A fetched and extracted document that has not been written yet."""
    ref: DocumentRef
    fetched: FetchedDocument
    document_type: DocumentType
    text: str
    status: ExtractionStatus
    error: str | None = None
    analysis: AnalysisResult = field(default_factory=AnalysisResult)


class DocumentIngestor:
    """Fetches and stores a job's documents, returning merged analysis candidates.

    Ingestion is split in two: ``prepare`` does the network, extraction and
    analysis work without touching the store, and ``store`` writes the rows.
    A caller holding a record-level transaction passes its session to
    ``store`` so the document rows commit or roll back with the job.

    Args:
        staging: Store documents are written to
        fetcher: Downloads document bytes
        analyzer: Extracts capability and skill candidates from text
        max_concurrency: Documents processed at once per job
        tmp_dir: Directory for transient extraction files
    """

    def __init__(
        self,
        staging: StagingStore,
        fetcher: DocumentFetcher,
        analyzer: TextAnalyzer,
        *,
        max_concurrency: int = 3,
        tmp_dir: str | None = None,
    ) -> None:
        self.staging = staging
        self.fetcher = fetcher
        self.analyzer = analyzer
        self.max_concurrency = max_concurrency
        self.tmp_dir = tmp_dir

    async def process(self, job_id: int, documents: Sequence[DocumentRef]) -> DocumentBatchResult:
        """Ingest every document attached to ``job_id``.

        Raises:
            DanglingReferenceError: The job does not exist
            TransactionError: A document row could not be written
        """
        prepared = await self.prepare(documents)
        if not prepared:
            return DocumentBatchResult()
        return await self.store(job_id, prepared)

    async def prepare(self, documents: Sequence[DocumentRef]) -> list[PreparedDocument]:
        """Fetch, extract and analyse each distinct URL. Never raises per document."""
        unique: dict[str, DocumentRef] = {}
        for ref in documents:
            unique.setdefault(ref.url.strip(), ref)
        if not unique:
            return []

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def bounded(url: str, ref: DocumentRef) -> PreparedDocument:
            async with semaphore:
                return await self._prepare_one(url, ref)

        return list(await asyncio.gather(*(bounded(url, ref) for url, ref in unique.items())))

    async def store(
        self,
        job_id: int,
        prepared: Sequence[PreparedDocument],
        *,
        session: AsyncSession | None = None,
    ) -> DocumentBatchResult:
        """Write prepared documents for ``job_id``, keyed by (job, URL).

        Without ``session`` the rows commit together in one transaction, and a
        lost insert race is retried once. With ``session`` they join the
        caller's transaction and that race surfaces as ConflictError.

        Raises:
            DanglingReferenceError: The job does not exist
            ConflictError: A concurrent writer inserted the same document first
            TransactionError: A document row could not be written
        """
        batch = DocumentBatchResult()
        if not prepared:
            return batch
        try:
            if session is not None:
                ids = await self._write(session, job_id, prepared)
            else:
                try:
                    ids = await self._write_once(job_id, prepared)
                except IntegrityError:
                    logger.info(f"Concurrent insert of documents for job {job_id}, retrying as update")
                    ids = await self._write_once(job_id, prepared)
        except IntegrityError as e:
            raise ConflictError(f"Documents for job {job_id} were created concurrently", component=COMPONENT) from e
        except SQLAlchemyError as e:
            raise TransactionError(f"Storing documents for job {job_id} failed: {e}", component=COMPONENT) from e

        for document_id, doc in zip(ids, prepared):
            batch.stored.append(DocumentOutcome(
                url=doc.fetched.url,
                document_id=document_id,
                document_type=doc.document_type.value,
                extraction_status=doc.status.value,
                text_length=len(doc.text),
                error=doc.error,
            ))
            batch.analysis = batch.analysis.merge(doc.analysis)

        logger.info(
            f"Job {job_id}: stored {len(batch.stored)} documents "
            f"({len(batch.failed)} failed extraction), "
            f"{len(batch.analysis.capabilities)} capabilities and {len(batch.analysis.skills)} skills found"
        )
        return batch

    async def _prepare_one(self, url: str, ref: DocumentRef) -> PreparedDocument:
        try:
            fetched = await self.fetcher.fetch(url)
        except Exception as e:
            # Any fetch failure leaves the document unavailable, never the record.
            logger.warning(f"Could not fetch {url}: {e}")
            return PreparedDocument(
                ref=ref,
                fetched=FetchedDocument(url=url, content=b""),
                document_type=detect_document_type(url, declared_type=ref.type),
                text="",
                status=ExtractionStatus.FAILED,
                error=str(e) or type(e).__name__,
            )

        document_type = detect_document_type(
            url,
            declared_type=ref.type,
            content_type=fetched.content_type,
            content=fetched.content,
        )

        error = None
        text = ""
        if document_type == DocumentType.UNKNOWN:
            status = ExtractionStatus.UNSUPPORTED
        else:
            try:
                parsed = await asyncio.to_thread(extract_text, fetched.content, document_type, tmp_dir=self.tmp_dir)
                text = normalize_text(parsed.text)
                status = ExtractionStatus.EXTRACTED if text else ExtractionStatus.EMPTY
            except ParseError as e:
                logger.warning(f"Extraction failed for {url}: {e}")
                status, error = ExtractionStatus.FAILED, str(e)

        analysis = AnalysisResult()
        if text:
            try:
                analysis = await self.analyzer.analyze(text)
            except CollaboratorError as e:
                logger.warning(f"Analysis failed for {url}, continuing without candidates: {e}")
        return PreparedDocument(ref, fetched, document_type, text, status, error, analysis)

    async def _write_once(self, job_id: int, prepared: Sequence[PreparedDocument]) -> list[int]:
        async with self.staging.transaction() as session:
            return await self._write(session, job_id, prepared)

    async def _write(self, session: AsyncSession, job_id: int, prepared: Sequence[PreparedDocument]) -> list[int]:
        if await session.get(Job, job_id) is None:
            raise DanglingReferenceError(f"Job {job_id} does not exist", component=COMPONENT)
        ids = []
        for doc in prepared:
            values = {
                "document_type": doc.document_type.value,
                "title": doc.ref.title,
                "content_type": doc.fetched.content_type,
                "byte_size": len(doc.fetched.content),
                "raw_content": doc.fetched.content or None,
                "parsed_content": doc.text,
                "extraction_status": doc.status.value,
                "sync_status": SyncStatus.PENDING.value,
            }
            stmt = select(JobDocument).where(JobDocument.job_id == job_id, JobDocument.document_url == doc.fetched.url)
            document = (await session.execute(stmt)).scalar_one_or_none()
            if document is None:
                document = JobDocument(job_id=job_id, document_url=doc.fetched.url, **values)
                session.add(document)
            else:
                for name, value in values.items():
                    setattr(document, name, value)
            await session.flush()
            ids.append(document.id)
        return ids

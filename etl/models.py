"""Core SQLAlchemy models (2.x style) for the staging schema.

The same schema backs the staging and the live store. Natural keys are
enforced with composite unique constraints so concurrent pipelines cannot
create duplicates; embeddings use pgvector.
"""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from pgvector.sqlalchemy import Vector
from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

EMBEDDING_DIM = 384


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SyncStatus(str, Enum):
    """Promotion state of a staged row."""
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class ChangeType(str, Enum):
    """Transition recorded in jobs_history."""
    CREATE = "create"
    UPDATE = "update"
    ARCHIVE = "archive"


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


class SyncMixin:
    """Staging/promotion contract carried by every writable table."""

    sync_status: Mapped[str] = mapped_column(
        String(20),
        default=SyncStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )


class Institution(SyncMixin, Base):
    """Top-level tenant grouping."""
    __tablename__ = "institutions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)


class Company(SyncMixin, Base):
    """Organisation a job is posted by (an agency for government sources)."""
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    institution_id: Mapped[int] = mapped_column(
        ForeignKey("institutions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_company_id: Mapped[int | None] = mapped_column(ForeignKey("companies.id", ondelete="SET NULL"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    website: Mapped[str | None] = mapped_column(String(512))
    raw_data: Mapped[dict | None] = mapped_column(JSON)

    divisions: Mapped[list[Division]] = relationship("Division", back_populates="company")

    __table_args__ = (
        UniqueConstraint("institution_id", "slug", name="uq_companies_institution_slug"),
    )


class Division(SyncMixin, Base):
    """Division within a company."""
    __tablename__ = "divisions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)

    company: Mapped[Company] = relationship("Company", back_populates="divisions")

    __table_args__ = (
        UniqueConstraint("company_id", "slug", name="uq_divisions_company_slug"),
    )


class GeneralRole(SyncMixin, Base):
    """Canonical cross-company role that company roles map onto."""
    __tablename__ = "general_roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    description: Mapped[str | None] = mapped_column(Text)
    function_area: Mapped[str | None] = mapped_column(String(255))
    classification_level: Mapped[str | None] = mapped_column(String(100))
    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIM))

    __table_args__ = (
        Index(
            "ix_general_roles_embedding",
            "embedding",
            postgresql_using="ivfflat",
            postgresql_with={"lists": 100},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class Role(SyncMixin, Base):
    """Company-specific role."""
    __tablename__ = "roles"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    division_id: Mapped[int | None] = mapped_column(ForeignKey("divisions.id", ondelete="SET NULL"))
    general_role_id: Mapped[int | None] = mapped_column(
        ForeignKey("general_roles.id", ondelete="SET NULL"),
        index=True,
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_key: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    embedding: Mapped[list[float] | None] = mapped_column(Vector(EMBEDDING_DIM))
    raw_data: Mapped[dict | None] = mapped_column(JSON)

    __table_args__ = (
        UniqueConstraint("normalized_key", "company_id", name="uq_roles_key_company"),
        Index(
            "ix_roles_embedding",
            "embedding",
            postgresql_using="ivfflat",
            postgresql_with={"lists": 100},
            postgresql_ops={"embedding": "vector_cosine_ops"},
        ),
    )


class Job(SyncMixin, Base):
    """Versioned job posting. Prior states live in jobs_history, never here."""
    __tablename__ = "jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    role_id: Mapped[int | None] = mapped_column(ForeignKey("roles.id", ondelete="SET NULL"), index=True)
    division_id: Mapped[int | None] = mapped_column(ForeignKey("divisions.id", ondelete="SET NULL"))
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    original_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    open_date: Mapped[date | None] = mapped_column(Date)
    close_date: Mapped[date | None] = mapped_column(Date)
    job_type: Mapped[str | None] = mapped_column(String(100))
    remuneration: Mapped[str | None] = mapped_column(String(255))
    source_url: Mapped[str | None] = mapped_column(String(1024))
    locations: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    raw_data: Mapped[dict | None] = mapped_column(JSON)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    first_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    last_updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    # Versions are assigned by VersionedJobStore; SQLAlchemy adds the
    # "WHERE version = <old>" guard to every UPDATE.
    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}

    __table_args__ = (
        UniqueConstraint("company_id", "source_id", "original_id", name="uq_jobs_company_source_original"),
    )

    @property
    def external_id(self) -> str:
        return f"{self.source_id}:{self.original_id}"


class JobHistory(SyncMixin, Base):
    """Append-only pre-transition snapshots of jobs."""
    __tablename__ = "jobs_history"

    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True)
    version: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(Integer, nullable=False)
    role_id: Mapped[int | None] = mapped_column(Integer)
    division_id: Mapped[int | None] = mapped_column(Integer)
    source_id: Mapped[str] = mapped_column(String(100), nullable=False)
    original_id: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    changed_fields: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)
    change_type: Mapped[str] = mapped_column(String(20), nullable=False)
    change_reason: Mapped[str | None] = mapped_column(Text)
    created_by: Mapped[str | None] = mapped_column(String(100))

    __table_args__ = (
        Index("ix_jobs_history_created_at", "created_at"),
    )


class Skill(SyncMixin, Base):
    """Skill scoped to a company."""
    __tablename__ = "skills"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_key: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    category: Mapped[str | None] = mapped_column(String(100))

    __table_args__ = (
        UniqueConstraint("company_id", "normalized_key", name="uq_skills_company_key"),
    )


class Capability(SyncMixin, Base):
    """Capability scoped to a company, with per-level behavioural descriptions."""
    __tablename__ = "capabilities"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_key: Mapped[str] = mapped_column(String(255), nullable=False)
    group_name: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    source_framework: Mapped[str | None] = mapped_column(String(255))

    levels: Mapped[list[CapabilityLevel]] = relationship("CapabilityLevel", back_populates="capability")

    __table_args__ = (
        UniqueConstraint("company_id", "normalized_key", name="uq_capabilities_company_key"),
    )


class CapabilityLevel(SyncMixin, Base):
    """One row per capability x level."""
    __tablename__ = "capability_levels"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    capability_id: Mapped[int] = mapped_column(
        ForeignKey("capabilities.id", ondelete="CASCADE"),
        nullable=False,
    )
    level: Mapped[str] = mapped_column(String(50), nullable=False)
    summary: Mapped[str | None] = mapped_column(Text)
    behavioral_indicators: Mapped[list[str] | None] = mapped_column(JSON)

    capability: Mapped[Capability] = relationship("Capability", back_populates="levels")

    __table_args__ = (
        UniqueConstraint("capability_id", "level", name="uq_capability_levels_capability_level"),
    )


class Taxonomy(SyncMixin, Base):
    """Role family grouping scoped to a company."""
    __tablename__ = "taxonomies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    company_id: Mapped[int] = mapped_column(ForeignKey("companies.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    normalized_key: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    taxonomy_type: Mapped[str] = mapped_column(String(50), default="core", nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "normalized_key", name="uq_taxonomies_company_key"),
    )


class JobDocument(SyncMixin, Base):
    """Document attached to a job, with raw bytes and extracted text."""
    __tablename__ = "job_documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True)
    document_url: Mapped[str] = mapped_column(String(1024), nullable=False)
    document_type: Mapped[str] = mapped_column(String(20), nullable=False)
    title: Mapped[str | None] = mapped_column(String(512))
    content_type: Mapped[str | None] = mapped_column(String(255))
    byte_size: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    raw_content: Mapped[bytes | None] = mapped_column(LargeBinary)
    parsed_content: Mapped[str] = mapped_column(Text, default="", nullable=False)
    extraction_status: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        UniqueConstraint("job_id", "document_url", name="uq_job_documents_job_url"),
    )


class RoleSkill(SyncMixin, Base):
    __tablename__ = "role_skills"

    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    skill_id: Mapped[int] = mapped_column(ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True)


class RoleCapability(SyncMixin, Base):
    __tablename__ = "role_capabilities"

    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    capability_id: Mapped[int] = mapped_column(ForeignKey("capabilities.id", ondelete="CASCADE"), primary_key=True)
    capability_type: Mapped[str] = mapped_column(String(50), primary_key=True, default="core")
    level: Mapped[str | None] = mapped_column(String(50))


class RoleTaxonomy(SyncMixin, Base):
    __tablename__ = "role_taxonomies"

    role_id: Mapped[int] = mapped_column(ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True)
    taxonomy_id: Mapped[int] = mapped_column(ForeignKey("taxonomies.id", ondelete="CASCADE"), primary_key=True)


class JobSkill(SyncMixin, Base):
    __tablename__ = "job_skills"

    job_id: Mapped[int] = mapped_column(ForeignKey("jobs.id", ondelete="CASCADE"), primary_key=True)
    skill_id: Mapped[int] = mapped_column(ForeignKey("skills.id", ondelete="CASCADE"), primary_key=True)

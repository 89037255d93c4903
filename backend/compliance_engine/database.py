"""
Database configuration and ORM models
SQLAlchemy tables for frameworks, rules, scans, findings and the resource inventory
"""

import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

Base = declarative_base()

ACTIVE_SCAN_CONDITION = "status IN ('pending', 'running')"


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every DateTime column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid4())


# Database Models
class ComplianceFramework(Base):  # type: ignore[valid-type, misc]
    """Built-in or custom compliance framework owned by an organization"""

    __tablename__ = "compliance_frameworks"
    __table_args__ = (UniqueConstraint("organization_id", "name", name="unique_org_framework_name"),)

    id = Column(String(36), primary_key=True, default=new_id)
    organization_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    framework_type = Column(String(50), nullable=False, default="custom")  # built_in, custom
    enabled = Column(Boolean, default=True, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    standard_name = Column(String(100), nullable=True)  # SOC2, HIPAA, PCI-DSS, CIS
    version = Column(String(50), nullable=True)
    created_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    rules = relationship(
        "ComplianceFrameworkRule",
        back_populates="framework",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class ComplianceFrameworkRule(Base):  # type: ignore[valid-type, misc]
    """Declarative rule belonging to exactly one framework"""

    __tablename__ = "compliance_framework_rules"
    __table_args__ = (UniqueConstraint("framework_id", "rule_code", name="unique_framework_rule_code"),)

    id = Column(String(36), primary_key=True, default=new_id)
    framework_id = Column(
        String(36),
        ForeignKey("compliance_frameworks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    rule_code = Column(String(100), nullable=False)  # SOC2-CC6.1, CUSTOM-001
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    severity = Column(String(20), nullable=False)
    category = Column(String(50), nullable=False)
    rule_type = Column(String(50), nullable=False)
    conditions = Column(JSON, nullable=False)
    resource_types = Column(JSON, nullable=False, default=list)  # empty = all types
    recommendation = Column(Text, nullable=False)
    remediation_url = Column(Text, nullable=True)
    enabled = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    framework = relationship("ComplianceFramework", back_populates="rules")


class ComplianceScan(Base):  # type: ignore[valid-type, misc]
    """Scan execution history and aggregate results"""

    __tablename__ = "compliance_scans"
    __table_args__ = (
        Index("idx_compliance_scans_org_framework_status", "organization_id", "framework_id", "status"),
        # At most one pending or running scan per (organization, framework)
        Index(
            "uq_compliance_scans_active",
            "organization_id",
            "framework_id",
            unique=True,
            sqlite_where=text(ACTIVE_SCAN_CONDITION),
            postgresql_where=text(ACTIVE_SCAN_CONDITION),
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    organization_id = Column(String(36), nullable=False, index=True)
    framework_id = Column(String(36), nullable=False, index=True)
    scan_type = Column(String(50), nullable=False, default="manual")  # manual, scheduled, continuous
    status = Column(String(50), nullable=False, default="pending")  # pending, running, completed, failed
    resource_filters = Column(JSON, nullable=False, default=dict)

    total_resources = Column(Integer, default=0, nullable=False)
    resources_scanned = Column(Integer, default=0, nullable=False)
    compliant_resources = Column(Integer, default=0, nullable=False)
    non_compliant_resources = Column(Integer, default=0, nullable=False)
    critical_issues = Column(Integer, default=0, nullable=False)
    high_issues = Column(Integer, default=0, nullable=False)
    medium_issues = Column(Integer, default=0, nullable=False)
    low_issues = Column(Integer, default=0, nullable=False)
    compliance_score = Column(Float, nullable=True)  # 0-100, set on completion

    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Float, nullable=True)
    error_message = Column(Text, nullable=True)
    results = Column(JSON, nullable=True)
    triggered_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ComplianceScanFinding(Base):  # type: ignore[valid-type, misc]
    """One finding per (scan, resource, rule)"""

    __tablename__ = "compliance_scan_findings"
    __table_args__ = (UniqueConstraint("scan_id", "resource_id", "rule_id", name="idx_scan_resource"),)

    id = Column(String(36), primary_key=True, default=new_id)
    scan_id = Column(String(36), ForeignKey("compliance_scans.id", ondelete="CASCADE"), nullable=False, index=True)
    # No FK to rules: findings stay readable after the rule is edited or deleted
    rule_id = Column(String(36), nullable=False, index=True)

    # Denormalized resource identity
    resource_id = Column(String(255), nullable=False, index=True)
    resource_arn = Column(Text, nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_name = Column(String(255), nullable=True)

    status = Column(String(20), nullable=False)  # pass, fail, error, skip
    severity = Column(String(20), nullable=False)
    category = Column(String(50), nullable=False)
    issue = Column(Text, nullable=True)
    recommendation = Column(Text, nullable=True)

    remediated = Column(Boolean, default=False, nullable=False)
    remediated_at = Column(DateTime, nullable=True)
    remediated_by = Column(String(36), nullable=True)
    remediation_notes = Column(Text, nullable=True)
    detected_at = Column(DateTime, default=utcnow, nullable=False)


class CloudResource(Base):  # type: ignore[valid-type, misc]
    """
    Resource inventory row.

    Owned by the ingestion subsystem; the compliance engine only reads it.
    """

    __tablename__ = "cloud_resources"

    id = Column(String(255), primary_key=True)
    organization_id = Column(String(36), nullable=False, index=True)
    resource_arn = Column(Text, nullable=False)
    resource_type = Column(String(50), nullable=False, index=True)
    resource_name = Column(String(255), nullable=True)
    region = Column(String(50), nullable=True)
    environment = Column(String(50), nullable=True)
    tags = Column(JSON, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    resource_metadata = Column("metadata", JSON, nullable=False, default=dict)
    is_encrypted = Column(Boolean, nullable=True)
    is_public = Column(Boolean, nullable=True)
    has_backup = Column(Boolean, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


def create_db_engine(settings: Optional[Settings] = None) -> Engine:
    """
    Create an engine for the configured database.

    SQLite connections are opened with ``check_same_thread=False`` because
    scan workers write findings from pool threads, with foreign keys on so
    framework deletion cascades to rules, and in WAL mode so a streaming
    resource read does not block finding writes.
    """
    settings = settings or get_settings()
    url = settings.database_url

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            echo=settings.database_echo,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

        @event.listens_for(engine, "connect")
        def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.close()

        return engine

    return create_engine(
        url,
        echo=settings.database_echo,
        pool_size=10,
        max_overflow=20,
        pool_pre_ping=True,
        pool_recycle=3600,  # Recycle connections every hour
    )


@lru_cache()
def get_engine() -> Engine:
    """Process-wide engine built from settings"""
    return create_db_engine()


def create_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@lru_cache()
def get_session_factory() -> sessionmaker:
    """Process-wide session factory bound to get_engine()"""
    return create_session_factory(get_engine())


def create_tables(engine: Optional[Engine] = None) -> None:
    """Create all tables"""
    Base.metadata.create_all(bind=engine or get_engine())


def check_database_health(engine: Optional[Engine] = None) -> bool:
    """Check database connectivity"""
    try:
        with (engine or get_engine()).connect() as connection:
            connection.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        return False


def init_database(engine: Optional[Engine] = None) -> None:
    """
    Verify connectivity and create tables if they don't exist.

    Raises:
        RuntimeError: If the database cannot be reached.
    """
    engine = engine or get_engine()
    if not check_database_health(engine):
        raise RuntimeError("Database connection failed")

    create_tables(engine)
    logger.info("Database initialized successfully")

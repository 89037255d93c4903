"""
Pytest configuration and fixtures for compliance engine tests.

Database fixtures use a file-backed SQLite database per test so worker
threads in scan tests share the same data through separate connections.
"""

from typing import Any, Callable, Dict, List, Optional

import pytest
from sqlalchemy.orm import Session, sessionmaker

from compliance_engine.config import Settings
from compliance_engine.database import (
    CloudResource,
    create_db_engine,
    create_session_factory,
    create_tables,
    new_id,
    utcnow,
)
from compliance_engine.models.compliance_models import (
    Framework,
    FrameworkDefinition,
    Resource,
    Rule,
    RuleDefinition,
)
from compliance_engine.models.enums import RuleCategory, RuleType, Severity
from compliance_engine.repositories.framework_repository import FrameworkRepository
from compliance_engine.services.compliance.rule_evaluator import RuleEvaluator

ORG_ID = "11111111-1111-1111-1111-111111111111"
OTHER_ORG_ID = "22222222-2222-2222-2222-222222222222"


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Settings pointing at a per-test SQLite file"""
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'compliance.db'}",
        max_concurrent_evaluations=4,
        scan_executor_workers=2,
        script_timeout_ms=1000,
        script_max_steps=10000,
        script_max_sequence_length=10000,
    )


@pytest.fixture
def engine(settings: Settings):
    """Create test database engine with all tables"""
    engine = create_db_engine(settings)
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine) -> sessionmaker:
    return create_session_factory(engine)


@pytest.fixture
def db_session(session_factory: sessionmaker) -> Session:
    """Provide database session for tests"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def evaluator(settings: Settings) -> RuleEvaluator:
    return RuleEvaluator(settings=settings)


@pytest.fixture
def resource_factory() -> Callable[..., Resource]:
    """Build in-memory Resource models"""

    def _make(**overrides: Any) -> Resource:
        resource_id = overrides.pop("id", f"i-{new_id()[:8]}")
        data: Dict[str, Any] = {
            "id": resource_id,
            "organization_id": ORG_ID,
            "resource_arn": f"arn:aws:ec2:us-east-1:123456789012:instance/{resource_id}",
            "resource_type": "ec2",
            "resource_name": "web-1",
            "region": "us-east-1",
            "environment": "production",
            "tags": {},
            "metadata": {},
        }
        data.update(overrides)
        return Resource(**data)

    return _make


@pytest.fixture
def rule_factory() -> Callable[..., Rule]:
    """Build in-memory Rule models"""

    def _make(**overrides: Any) -> Rule:
        data: Dict[str, Any] = {
            "id": new_id(),
            "framework_id": new_id(),
            "rule_code": "TEST-001",
            "title": "Test rule",
            "severity": Severity.HIGH,
            "category": RuleCategory.TAGGING,
            "rule_type": RuleType.TAG_REQUIRED,
            "conditions": {"tag_key": "Owner"},
            "resource_types": [],
            "recommendation": "Fix it",
        }
        data.update(overrides)
        return Rule(**data)

    return _make


@pytest.fixture
def inventory(session_factory: sessionmaker) -> Callable[..., List[str]]:
    """Insert rows into the resource inventory; returns their ids"""

    def _add(*resources: Dict[str, Any]) -> List[str]:
        ids = []
        with session_factory() as db:
            for entry in resources:
                resource_id = entry.get("id") or f"res-{new_id()[:8]}"
                resource_type = entry.get("resource_type", "ec2")
                db.add(
                    CloudResource(
                        id=resource_id,
                        organization_id=entry.get("organization_id", ORG_ID),
                        resource_arn=entry.get("resource_arn", f"arn:aws:{resource_type}:::{resource_id}"),
                        resource_type=resource_type,
                        resource_name=entry.get("resource_name", resource_id),
                        region=entry.get("region", "us-east-1"),
                        environment=entry.get("environment", "production"),
                        tags=entry.get("tags", {}),
                        resource_metadata=entry.get("metadata", {}),
                        is_encrypted=entry.get("is_encrypted"),
                        is_public=entry.get("is_public"),
                        has_backup=entry.get("has_backup"),
                        created_at=utcnow(),
                    )
                )
                ids.append(resource_id)
            db.commit()
        return ids

    return _add


def rule_definition(**overrides: Any) -> RuleDefinition:
    data: Dict[str, Any] = {
        "rule_code": "TEST-001",
        "title": "Owner tag required",
        "severity": "high",
        "category": "tagging",
        "rule_type": "tag_required",
        "conditions": {"tag_key": "Owner"},
        "recommendation": "Add an Owner tag",
    }
    data.update(overrides)
    return RuleDefinition(**data)


@pytest.fixture
def framework_factory(session_factory: sessionmaker, evaluator: RuleEvaluator) -> Callable[..., Framework]:
    """Create a framework with rules given as RuleDefinition overrides"""

    def _create(
        rules: Optional[List[Dict[str, Any]]] = None,
        name: Optional[str] = None,
        organization_id: str = ORG_ID,
    ) -> Framework:
        definition = FrameworkDefinition(
            name=name or f"Framework {new_id()[:8]}",
            rules=[rule_definition(**spec) for spec in (rules if rules is not None else [{}])],
        )
        with session_factory() as db:
            return FrameworkRepository(db, rule_validator=evaluator).create_framework(organization_id, definition)

    return _create

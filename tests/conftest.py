"""
Shared pytest fixtures for the MOC workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_levels: Supervisor → DepartmentManager → AVP approval template
    - draft: a standard EMOC draft created through the service layer
"""

import pytest

from moc import create_app
from moc.models import db as _db
from moc.models.approval_level import ApprovalLevel


DEFAULT_ROLES = ("Supervisor", "DepartmentManager", "AVP")


def make_levels(*roles, inactive=()):
    """Insert approval levels in the given order; roles in *inactive* are disabled."""
    created = []
    for order, role in enumerate(roles, 1):
        level = ApprovalLevel(order=order, role_key=role, is_active=role not in inactive)
        _db.session.add(level)
        created.append(level)
    _db.session.commit()
    return created


def draft_fields(**overrides):
    """A payload that passes submission validation."""
    data = {
        "title": "Replace relief valve PSV-101",
        "area_code": "Plant1",
        "category_code": "Proc",
        "scope_description": "Swap the PSV on the crude charge line",
        "reason_for_change": "Existing valve is obsolete",
        "target_implementation_date": "2026-11-02",
        "risk_level": "yellow",
    }
    data.update(overrides)
    return data


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def default_levels():
    """Three active levels: Supervisor, DepartmentManager, AVP."""
    return make_levels(*DEFAULT_ROLES)


@pytest.fixture()
def draft():
    """A standard EMOC draft ready to submit."""
    from moc.services import moc_workflow
    return moc_workflow.create_draft(draft_fields(), actor="originator.one").request

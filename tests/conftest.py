import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# the app module builds its engine at import time; keep it off the network
os.environ["DATABASE_URL"] = "sqlite://"

from formbuilder.app import app, get_preview_store  # noqa: E402
from formbuilder.database import get_db, init_db  # noqa: E402
from formbuilder.preview import PreviewSessionStore  # noqa: E402
from formbuilder.schemas import (  # noqa: E402
    ConditionOperator,
    Element,
    ElementKind,
    Form,
    InteractionRule,
    RuleAction,
)


def make_element(element_id, kind=ElementKind.TextInput, order=None, **kwargs):
    data = {
        "element_id": element_id,
        "form_id": 1,
        "kind": kind,
        "label": kwargs.pop("label", f"Field {element_id}"),
        "order": element_id - 1 if order is None else order,
    }
    data.update(kwargs)
    return Element(**data)


def make_rule(rule_id, source, target, operator, action, condition_value=""):
    return InteractionRule(
        interaction_rule_id=rule_id,
        source_element_id=source,
        target_element_id=target,
        operator=operator,
        condition_value=condition_value,
        action=action,
    )


@pytest.fixture
def two_field_form():
    """Form with a text field A (id 1) and a text field B (id 2)."""
    return Form(form_id=1, name="Two fields", elements=[make_element(1, label="A"), make_element(2, label="B")])


@pytest.fixture
def hide_rule():
    return make_rule(10, 1, 2, ConditionOperator.Equals, RuleAction.Hide, "yes")


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(engine):
    TestingSession = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    store = PreviewSessionStore()

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_preview_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()

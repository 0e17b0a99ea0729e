"""Shared fixtures: a throwaway SQLite database and record factories."""

import copy

import pytest

from entityintel.config import config
from entityintel.database import configure, init_db, get_session, Entity, Contract, Grant


@pytest.fixture(autouse=True)
def isolated_config(monkeypatch):
    """Runtime config.set() calls never leak between tests."""
    monkeypatch.setattr(config, "_config", copy.deepcopy(config._config))
    yield config


@pytest.fixture
def db(tmp_path):
    configure(f"sqlite:///{tmp_path / 'entityintel.db'}")
    init_db()
    yield


@pytest.fixture
def make_entity(db):
    def _make(name="ACME SYSTEMS", **kwargs):
        with get_session() as session:
            entity = Entity(canonical_name=name, **kwargs)
            session.add(entity)
            session.flush()
            return entity.id
    return _make


@pytest.fixture
def make_contract(db):
    def _make(recipient_entity_id=None, recipient_name="ACME SYSTEMS", **kwargs):
        kwargs.setdefault("awarding_agency", "Department of Defense")
        kwargs.setdefault("award_amount", 100_000.0)
        with get_session() as session:
            contract = Contract(
                recipient_entity_id=recipient_entity_id,
                recipient_name=recipient_name,
                **kwargs,
            )
            session.add(contract)
            session.flush()
            return contract.id
    return _make


@pytest.fixture
def make_grant(db):
    def _make(recipient_entity_id=None, recipient_name="ACME SYSTEMS", **kwargs):
        with get_session() as session:
            grant = Grant(
                recipient_entity_id=recipient_entity_id,
                recipient_name=recipient_name,
                **kwargs,
            )
            session.add(grant)
            session.flush()
            return grant.id
    return _make

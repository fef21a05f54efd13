"""
Tests for the authorization version policy and AuthorizationGate.

The gate is the only path by which a job's stored app version changes, and
it only ever moves forward.
"""

import pytest

from dca_kernel.domain.authorization import (
    AuthorizationDecision,
    assert_permitted_version,
)
from dca_kernel.exceptions import (
    AuthorizationRevokedError,
    UnsupportedVersionTransitionError,
)

from dca_batch.services.authorization_gate import AuthorizationGate

from tests.conftest import APP_ID, OWNER, make_job
from tests.fakes import FakePermittedVersionStore, InMemoryJobStore


class TestVersionPolicy:
    def test_forward_move_accepted(self):
        assert assert_permitted_version(1, 3) == 3

    def test_same_version_passes(self):
        assert assert_permitted_version(2, 2) == 2

    def test_downgrade_rejected(self):
        with pytest.raises(UnsupportedVersionTransitionError) as exc_info:
            assert_permitted_version(3, 2)
        assert exc_info.value.stored_version == 3
        assert exc_info.value.permitted_version == 2


class TestDecision:
    def test_advanced_when_version_changes(self):
        decision = AuthorizationDecision(
            app_id=APP_ID, version_to_run=2, previous_version=1, permitted_version=2,
        )
        assert decision.advanced

    def test_not_advanced_when_unchanged(self):
        decision = AuthorizationDecision(
            app_id=APP_ID, version_to_run=1, previous_version=1, permitted_version=1,
        )
        assert not decision.advanced


@pytest.fixture
def store(clock):
    return InMemoryJobStore(clock)


class TestAuthorizationGate:
    def test_pass_through_when_versions_match(self, store):
        job = store.create(make_job(version=1))
        gate = AuthorizationGate(FakePermittedVersionStore({(OWNER, APP_ID): 1}), store)

        authorized, decision = gate.authorize(job)

        assert authorized == job
        assert not decision.advanced
        assert store.saves == []

    def test_revoked_raises(self, store):
        job = store.create(make_job(version=1))
        gate = AuthorizationGate(FakePermittedVersionStore(), store)

        with pytest.raises(AuthorizationRevokedError) as exc_info:
            gate.authorize(job)
        assert exc_info.value.owner_address == OWNER
        assert exc_info.value.app_id == APP_ID
        assert exc_info.value.stored_version == 1

    def test_advance_saves_once_with_new_version(self, store, captured_logs):
        job = store.create(make_job(version=1))
        gate = AuthorizationGate(FakePermittedVersionStore({(OWNER, APP_ID): 4}), store)

        authorized, decision = gate.authorize(job)

        assert authorized.app.version == 4
        assert decision.advanced
        assert decision.previous_version == 1
        assert len(store.saves) == 1
        assert store.load(job.job_id).app.version == 4
        assert any(
            r["message"] == "authorization_version_advanced" for r in captured_logs()
        )

    def test_downgrade_does_not_save(self, store):
        job = store.create(make_job(version=3))
        gate = AuthorizationGate(FakePermittedVersionStore({(OWNER, APP_ID): 2}), store)

        with pytest.raises(UnsupportedVersionTransitionError):
            gate.authorize(job)
        assert store.saves == []

    def test_injected_policy(self, store):
        job = store.create(make_job(version=5))
        gate = AuthorizationGate(
            FakePermittedVersionStore({(OWNER, APP_ID): 2}),
            store,
            version_policy=lambda stored, permitted: stored,
        )

        authorized, decision = gate.authorize(job)

        assert authorized.app.version == 5
        assert not decision.advanced
        assert decision.permitted_version == 2
        assert store.saves == []

    def test_lookup_runs_through_caller(self, store):
        job = store.create(make_job(version=1))
        versions = FakePermittedVersionStore({(OWNER, APP_ID): 2})
        gate = AuthorizationGate(versions, store)
        phases = []

        def call(fn, *args, phase):
            phases.append(phase)
            return fn(*args)

        authorized, decision = gate.authorize(job, call=call)

        assert phases == ["authorization"]
        assert versions.calls == 1
        assert authorized.app.version == 2
        assert decision.advanced

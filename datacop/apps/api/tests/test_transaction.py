"""run_in_transaction: commit, replay on conflict, bounded retries."""

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, ProgrammingError

from datacop_api.db.models import Organization
from datacop_api.db.transaction import VersionConflict, backoff_delay, run_in_transaction
from datacop_api.errors import InvitationNotFound, MembershipConflict, TransientStoreError


def _org(org_id: str = "org_tx") -> Organization:
    return Organization(id=org_id, name="Tx", company_name="Tx", team_members=[], admin_members=[])


def test_commits_work_result(session_factory, load):
    def work(db):
        db.add(_org())
        return "done"

    assert run_in_transaction(session_factory, work, operation="test", max_attempts=1) == "done"
    assert load(Organization, "org_tx") is not None


def test_conflict_is_replayed_from_scratch(session_factory, load):
    calls = []
    sleeps = []

    def work(db):
        calls.append(1)
        db.add(_org(f"org_{len(calls)}"))
        if len(calls) < 3:
            raise VersionConflict("lost the race")
        return len(calls)

    result = run_in_transaction(
        session_factory, work, operation="test", max_attempts=5, base_delay=0.01, sleep=sleeps.append
    )
    assert result == 3
    assert sleeps == [0.01, 0.02]
    # Earlier attempts were rolled back
    assert load(Organization, "org_1") is None
    assert load(Organization, "org_2") is None
    assert load(Organization, "org_3") is not None


def test_exhausted_conflicts_raise_conflict_error(session_factory):
    def work(db):
        raise VersionConflict("always")

    with pytest.raises(MembershipConflict):
        run_in_transaction(session_factory, work, operation="test", max_attempts=3, base_delay=0, sleep=lambda _s: None)


def test_custom_conflict_error(session_factory):
    def work(db):
        raise VersionConflict("always")

    with pytest.raises(InvitationNotFound):
        run_in_transaction(
            session_factory,
            work,
            operation="test",
            max_attempts=1,
            conflict_error=InvitationNotFound,
        )


def test_operational_errors_become_transient(session_factory):
    calls = []

    def work(db):
        calls.append(1)
        raise OperationalError("SELECT 1", {}, Exception("connection reset"))

    with pytest.raises(TransientStoreError):
        run_in_transaction(session_factory, work, operation="test", max_attempts=2, base_delay=0, sleep=lambda _s: None)
    assert len(calls) == 2


def test_unexpected_store_error_is_not_retried(session_factory):
    calls = []

    def work(db):
        calls.append(1)
        raise ProgrammingError("SELECT nope", {}, Exception("syntax"))

    with pytest.raises(TransientStoreError):
        run_in_transaction(session_factory, work, operation="test", max_attempts=5, base_delay=0)
    assert len(calls) == 1


def test_integrity_and_domain_errors_propagate(session_factory, load):
    def integrity(db):
        db.add(_org())
        raise IntegrityError("INSERT", {}, Exception("unique"))

    def domain(db):
        db.add(_org())
        raise InvitationNotFound("gone")

    with pytest.raises(IntegrityError):
        run_in_transaction(session_factory, integrity, operation="test", max_attempts=3)
    with pytest.raises(InvitationNotFound):
        run_in_transaction(session_factory, domain, operation="test", max_attempts=3)
    assert load(Organization, "org_tx") is None


def test_defaults_come_from_environment(session_factory, monkeypatch):
    monkeypatch.setenv("MEMBERSHIP_TX_MAX_ATTEMPTS", "2")
    calls = []

    def work(db):
        calls.append(1)
        raise VersionConflict("always")

    with pytest.raises(MembershipConflict):
        run_in_transaction(session_factory, work, operation="test", sleep=lambda _s: None)
    assert len(calls) == 2


@pytest.mark.parametrize(
    "attempt, expected",
    [(1, 0.02), (2, 0.04), (3, 0.08), (7, 1.0)],
)
def test_backoff_doubles_and_caps(attempt, expected):
    assert backoff_delay(attempt, 0.02) == pytest.approx(expected)

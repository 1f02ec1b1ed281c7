from __future__ import annotations

import asyncio
import re

import pytest

from certvault.core.errors import InvalidTransition, PermissionDenied, ValidationError
from certvault.models.certificate import CertificateRecord, CertificateStatus, HistoryAction
from certvault.services.lifecycle import (
    TRANSITIONS,
    Action,
    LifecycleService,
    generate_verification_code,
    normalize_verification_code,
)
from certvault.services.registry import Services
from tests.conftest import ADMIN, CREATOR, ISSUER, OTHER_CREATOR, VERIFIER, make_draft


def _create(services: Services, **overrides: object) -> CertificateRecord:
    return asyncio.run(services.certificates.create(make_draft(**overrides), CREATOR))


def _approve(services: Services, certificate_id: str = "CERT-A1") -> CertificateRecord:
    return asyncio.run(
        services.lifecycle.verify(certificate_id, VERIFIER, approved=True)
    )


def _stored(services: Services, certificate_id: str = "CERT-A1") -> CertificateRecord:
    record = asyncio.run(services.repo.get(certificate_id))
    assert record is not None
    return record


def _assert_history_chains(record: CertificateRecord) -> None:
    for previous, entry in zip(record.history, record.history[1:]):
        assert entry.previous_status == previous.new_status
    assert record.history[-1].new_status == record.status


# ---- happy path ----


def test_issue_then_revoke(services: Services) -> None:
    _create(services)
    approved = _approve(services)
    assert approved.status == CertificateStatus.APPROVED
    assert approved.verifier is not None
    assert approved.verifier.actor_id == VERIFIER.user_id

    issued = asyncio.run(services.lifecycle.issue("CERT-A1", ISSUER))
    assert issued.status == CertificateStatus.ISSUED
    assert issued.is_verified is True
    assert issued.issuer is not None
    assert re.fullmatch(r"[0-9A-F]{32}", issued.verification_code or "")

    revoked = asyncio.run(
        services.lifecycle.revoke("CERT-A1", ISSUER, reason="Academic misconduct")
    )
    assert revoked.status == CertificateStatus.REVOKED
    assert revoked.is_verified is False
    assert revoked.verification_code == issued.verification_code
    assert revoked.history[-1].details == "Certificate revoked: Academic misconduct"

    stored = _stored(services)
    assert [h.action for h in stored.history] == [
        HistoryAction.CREATED,
        HistoryAction.APPROVED,
        HistoryAction.ISSUED,
        HistoryAction.REVOKED,
    ]
    assert stored.version == 4
    _assert_history_chains(stored)


def test_reject(services: Services) -> None:
    _create(services)
    rejected = asyncio.run(
        services.lifecycle.verify(
            "CERT-A1", VERIFIER, approved=False, comments="Grade does not match"
        )
    )
    assert rejected.status == CertificateStatus.REJECTED
    assert rejected.history[-1].details == "Grade does not match"
    assert rejected.verifier is not None
    assert rejected.verifier.comments == "Grade does not match"


def test_default_history_details(services: Services) -> None:
    _create(services)
    approved = _approve(services)
    assert approved.history[-1].details == "Certificate approved"
    assert approved.history[-1].performed_by == VERIFIER.user_id


def test_admin_holds_every_permission(services: Services) -> None:
    _create(services)
    asyncio.run(services.lifecycle.verify("CERT-A1", ADMIN, approved=True))
    issued = asyncio.run(services.lifecycle.issue("CERT-A1", ADMIN))
    assert issued.status == CertificateStatus.ISSUED


# ---- illegal transitions leave state untouched ----


@pytest.mark.parametrize(
    ("setup", "attempt"),
    [
        ((), lambda s: s.lifecycle.issue("CERT-A1", ISSUER)),
        ((), lambda s: s.lifecycle.revoke("CERT-A1", ISSUER, reason="x")),
        (("approve",), lambda s: s.lifecycle.verify("CERT-A1", VERIFIER, approved=True)),
        (("approve",), lambda s: s.lifecycle.revoke("CERT-A1", ISSUER, reason="x")),
        (
            ("reject",),
            lambda s: s.lifecycle.verify("CERT-A1", VERIFIER, approved=True),
        ),
        (("reject",), lambda s: s.lifecycle.issue("CERT-A1", ISSUER)),
        (("approve", "issue"), lambda s: s.lifecycle.issue("CERT-A1", ISSUER)),
        (
            ("approve", "issue", "revoke"),
            lambda s: s.lifecycle.revoke("CERT-A1", ISSUER, reason="again"),
        ),
    ],
)
def test_illegal_transition_changes_nothing(services: Services, setup, attempt) -> None:
    _create(services)
    steps = {
        "approve": lambda: services.lifecycle.verify("CERT-A1", VERIFIER, approved=True),
        "reject": lambda: services.lifecycle.verify("CERT-A1", VERIFIER, approved=False),
        "issue": lambda: services.lifecycle.issue("CERT-A1", ISSUER),
        "revoke": lambda: services.lifecycle.revoke("CERT-A1", ISSUER, reason="r"),
    }
    for step in setup:
        asyncio.run(steps[step]())
    before = _stored(services)

    with pytest.raises(InvalidTransition) as exc_info:
        asyncio.run(attempt(services))

    assert exc_info.value.current_status == before.status.value
    assert _stored(services) == before


def test_transition_table_has_no_exit_from_terminal_states() -> None:
    sources = {source for source, _ in TRANSITIONS}
    assert CertificateStatus.REJECTED not in sources
    assert CertificateStatus.REVOKED not in sources


# ---- guards ----


def test_creator_cannot_approve(services: Services) -> None:
    _create(services)
    with pytest.raises(PermissionDenied):
        asyncio.run(services.lifecycle.verify("CERT-A1", CREATOR, approved=True))
    assert _stored(services).status == CertificateStatus.PENDING


def test_verifier_cannot_issue(services: Services) -> None:
    _create(services)
    _approve(services)
    with pytest.raises(PermissionDenied):
        asyncio.run(services.lifecycle.issue("CERT-A1", VERIFIER))
    assert _stored(services).status == CertificateStatus.APPROVED


def test_revoke_requires_reason(services: Services) -> None:
    _create(services)
    _approve(services)
    asyncio.run(services.lifecycle.issue("CERT-A1", ISSUER))
    with pytest.raises(ValidationError):
        asyncio.run(services.lifecycle.revoke("CERT-A1", ISSUER, reason="   "))
    assert _stored(services).status == CertificateStatus.ISSUED


def test_only_creator_or_admin_may_delete(services: Services) -> None:
    record = _create(services)
    with pytest.raises(PermissionDenied):
        asyncio.run(services.lifecycle.delete(record, OTHER_CREATOR))
    asyncio.run(services.lifecycle.delete(record, ADMIN))
    assert asyncio.run(services.repo.get("CERT-A1")) is None


def test_delete_after_approval_is_invalid(services: Services) -> None:
    _create(services)
    approved = _approve(services)
    with pytest.raises(InvalidTransition):
        asyncio.run(services.lifecycle.delete(approved, CREATOR))
    assert _stored(services).status == CertificateStatus.APPROVED


# ---- concurrency ----


def test_stale_write_loses(services: Services) -> None:
    stale = _create(services)
    _approve(services)

    rejected = stale.with_history(
        action=HistoryAction.REJECTED,
        performed_by=VERIFIER.user_id,
        new_status=CertificateStatus.REJECTED,
    )
    with pytest.raises(InvalidTransition, match="modified concurrently"):
        asyncio.run(services.lifecycle.commit(stale, rejected, Action.REJECT, VERIFIER))
    assert _stored(services).status == CertificateStatus.APPROVED


def test_stale_delete_loses(services: Services) -> None:
    stale = _create(services)
    asyncio.run(services.certificates.update("CERT-A1", CREATOR, {"title": "Renamed"}))
    with pytest.raises(InvalidTransition):
        asyncio.run(services.lifecycle.delete(stale, CREATOR))
    assert _stored(services).title == "Renamed"


def test_racing_approve_and_reject_one_wins(services: Services) -> None:
    _create(services)

    async def race():
        return await asyncio.gather(
            services.lifecycle.verify("CERT-A1", VERIFIER, approved=True),
            services.lifecycle.verify("CERT-A1", VERIFIER, approved=False),
            return_exceptions=True,
        )

    results = asyncio.run(race())
    winners = [r for r in results if isinstance(r, CertificateRecord)]
    losers = [r for r in results if isinstance(r, InvalidTransition)]
    assert len(winners) == 1
    assert len(losers) == 1

    stored = _stored(services)
    assert stored.status == winners[0].status
    assert len(stored.history) == 2


# ---- verification codes ----


def test_verification_code_format() -> None:
    code = generate_verification_code()
    assert re.fullmatch(r"[0-9A-F]{32}", code)
    assert normalize_verification_code(f"  {code.lower()} ") == code


def test_colliding_code_is_regenerated(services: Services) -> None:
    taken = "A" * 32
    fresh = "B" * 32
    codes = iter([taken, taken, fresh])
    lifecycle = LifecycleService(services.repo, code_generator=lambda: next(codes))

    _create(services)
    _create(services, certificate_id="CERT-A2")
    _approve(services, "CERT-A1")
    _approve(services, "CERT-A2")

    first = asyncio.run(lifecycle.issue("CERT-A1", ISSUER))
    second = asyncio.run(lifecycle.issue("CERT-A2", ISSUER))
    assert first.verification_code == taken
    assert second.verification_code == fresh


# ---- change listener ----


def test_listener_failure_does_not_fail_committed_action(
    services: Services, caplog: pytest.LogCaptureFixture
) -> None:
    async def _broken_invalidate(record: CertificateRecord) -> None:
        raise ConnectionError("cache unreachable")

    lifecycle = LifecycleService(services.repo, on_change=_broken_invalidate)
    _create(services)
    _approve(services)

    issued = asyncio.run(lifecycle.issue("CERT-A1", ISSUER))
    assert issued.status == CertificateStatus.ISSUED
    assert _stored(services) == issued

    revoked = asyncio.run(lifecycle.revoke("CERT-A1", ISSUER, reason="Issued in error"))
    assert revoked.status == CertificateStatus.REVOKED
    assert _stored(services).status == CertificateStatus.REVOKED
    assert "Change listener failed after commit" in caplog.text


# ---- anchoring bookkeeping ----


def test_record_anchor_keeps_status(services: Services) -> None:
    record = _create(services)
    anchored = asyncio.run(
        services.lifecycle.record_anchor(record, ISSUER, tx_id="0xabc", block_height=7)
    )
    assert anchored.status == CertificateStatus.PENDING
    assert anchored.anchor is not None
    assert anchored.anchor.block_height == 7
    assert anchored.history[-1].action == HistoryAction.ANCHORED
    assert anchored.history[-1].previous_status == CertificateStatus.PENDING


def test_revoked_certificate_cannot_be_anchored(services: Services) -> None:
    _create(services)
    _approve(services)
    asyncio.run(services.lifecycle.issue("CERT-A1", ISSUER))
    revoked = asyncio.run(services.lifecycle.revoke("CERT-A1", ISSUER, reason="r"))
    with pytest.raises(InvalidTransition):
        asyncio.run(
            services.lifecycle.record_anchor(revoked, ISSUER, tx_id="0x1", block_height=1)
        )

"""Certificate lifecycle state machine.

    PENDING --verify(approved)--> APPROVED --issue--> ISSUED --revoke--> REVOKED
       |
       +---verify(rejected)--> REJECTED

    PENDING --update--> PENDING          PENDING --delete--> (removed)

Every status-changing action appends exactly one history entry in the same
write as the status change.  Writes go through the repository's
compare-and-swap on (certificate_id, status, version): an action computed
from a stale read loses with InvalidTransition and changes nothing.
"""

from __future__ import annotations

import dataclasses
import logging
import secrets
from collections.abc import Awaitable, Callable
from enum import StrEnum

from certvault.core.errors import (
    InvalidTransition,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from certvault.core.metrics import CERTIFICATE_TRANSITIONS
from certvault.models.certificate import (
    AnchorInfo,
    CertificateRecord,
    CertificateStatus,
    HistoryAction,
    WorkflowStamp,
    utcnow,
)
from certvault.models.principal import ISSUE_CERTIFICATES, VERIFY_CERTIFICATES, Principal
from certvault.repos.certificate_repo import CertificateRepo

logger = logging.getLogger(__name__)


class Action(StrEnum):
    APPROVE = "approve"
    REJECT = "reject"
    ISSUE = "issue"
    REVOKE = "revoke"
    UPDATE = "update"
    DELETE = "delete"
    ANCHOR = "anchor"


# (source status, action) -> target status.  Anything absent is illegal.
TRANSITIONS: dict[tuple[CertificateStatus, Action], CertificateStatus] = {
    (CertificateStatus.PENDING, Action.APPROVE): CertificateStatus.APPROVED,
    (CertificateStatus.PENDING, Action.REJECT): CertificateStatus.REJECTED,
    (CertificateStatus.APPROVED, Action.ISSUE): CertificateStatus.ISSUED,
    (CertificateStatus.ISSUED, Action.REVOKE): CertificateStatus.REVOKED,
    (CertificateStatus.PENDING, Action.UPDATE): CertificateStatus.PENDING,
}

# Anchoring records proof of existence and leaves the status alone.
ANCHORABLE = frozenset(
    {
        CertificateStatus.PENDING,
        CertificateStatus.APPROVED,
        CertificateStatus.ISSUED,
    }
)

GUARDS: dict[Action, str] = {
    Action.APPROVE: VERIFY_CERTIFICATES,
    Action.REJECT: VERIFY_CERTIFICATES,
    Action.ISSUE: ISSUE_CERTIFICATES,
    Action.REVOKE: ISSUE_CERTIFICATES,
}


def generate_verification_code() -> str:
    """32 uppercase hex characters from 16 random bytes."""
    return secrets.token_hex(16).upper()


def normalize_verification_code(code: str) -> str:
    return code.strip().upper()


ChangeListener = Callable[[CertificateRecord], Awaitable[None]]


class LifecycleService:
    def __init__(
        self,
        repo: CertificateRepo,
        *,
        code_generator: Callable[[], str] = generate_verification_code,
        on_change: ChangeListener | None = None,
    ) -> None:
        self._repo = repo
        self._code_generator = code_generator
        self._on_change = on_change

    # -- helpers ------------------------------------------------------------

    async def load(self, certificate_id: str) -> CertificateRecord:
        record = await self._repo.get(certificate_id)
        if record is None:
            raise NotFoundError(f"Certificate {certificate_id} not found")
        return record

    def _check_permission(self, actor: Principal, action: Action, record_id: str) -> None:
        permission = GUARDS.get(action)
        if permission is not None and not actor.has_permission(permission):
            CERTIFICATE_TRANSITIONS.labels(action.value, "denied").inc()
            logger.warning(
                "Transition denied: missing %s",
                permission,
                extra={
                    "certificate_id": record_id,
                    "actor_id": actor.user_id,
                    "action": action.value,
                },
            )
            raise PermissionDenied(f"{permission} permission required")

    def check_owner(self, record: CertificateRecord, actor: Principal, action: Action) -> None:
        """Edits and deletes are reserved to the creator (and admins)."""
        if actor.is_admin() or actor.user_id == record.creator_id:
            return
        CERTIFICATE_TRANSITIONS.labels(action.value, "denied").inc()
        raise PermissionDenied(f"Only the creator can {action.value} this certificate")

    @staticmethod
    def target_status(record: CertificateRecord, action: Action) -> CertificateStatus:
        try:
            return TRANSITIONS[(record.status, action)]
        except KeyError:
            CERTIFICATE_TRANSITIONS.labels(action.value, "invalid").inc()
            raise InvalidTransition(
                f"Cannot {action.value} a certificate in status {record.status.value}",
                current_status=record.status.value,
            ) from None

    async def commit(
        self,
        current: CertificateRecord,
        updated: CertificateRecord,
        action: Action,
        actor: Principal,
    ) -> CertificateRecord:
        """CAS ``updated`` over ``current`` with the version bumped."""
        updated = dataclasses.replace(updated, version=current.version + 1)
        swapped = await self._repo.compare_and_swap(
            updated, current.status, current.version
        )
        context = {
            "certificate_id": current.certificate_id,
            "actor_id": actor.user_id,
            "action": action.value,
        }
        if not swapped:
            CERTIFICATE_TRANSITIONS.labels(action.value, "invalid").inc()
            logger.warning("Concurrent modification lost the race", extra=context)
            raise InvalidTransition(
                f"Certificate {current.certificate_id} was modified concurrently",
                current_status=current.status.value,
            )
        CERTIFICATE_TRANSITIONS.labels(action.value, "ok").inc()
        logger.info(
            "Certificate %s: %s -> %s",
            action.value,
            current.status.value,
            updated.status.value,
            extra=context,
        )
        if self._on_change is not None:
            # The write has landed; a listener failure must not undo it.
            try:
                await self._on_change(updated)
            except Exception:
                logger.warning(
                    "Change listener failed after commit", exc_info=True, extra=context
                )
        return updated

    # -- transitions --------------------------------------------------------

    async def verify(
        self,
        certificate_id: str,
        actor: Principal,
        *,
        approved: bool,
        comments: str = "",
    ) -> CertificateRecord:
        action = Action.APPROVE if approved else Action.REJECT
        self._check_permission(actor, action, certificate_id)
        record = await self.load(certificate_id)
        target = self.target_status(record, action)
        default = "Certificate approved" if approved else "Certificate rejected"
        updated = record.with_history(
            action=HistoryAction.APPROVED if approved else HistoryAction.REJECTED,
            performed_by=actor.user_id,
            details=comments or default,
            new_status=target,
            verifier=WorkflowStamp(
                actor_id=actor.user_id, timestamp=utcnow(), comments=comments
            ),
        )
        return await self.commit(record, updated, action, actor)

    async def _unique_code(self) -> str:
        while True:
            code = self._code_generator()
            if await self._repo.get_by_verification_code(code) is None:
                return code
            logger.warning("Verification code collision; regenerating")

    async def issue(
        self, certificate_id: str, actor: Principal, *, comments: str = ""
    ) -> CertificateRecord:
        self._check_permission(actor, Action.ISSUE, certificate_id)
        record = await self.load(certificate_id)
        target = self.target_status(record, Action.ISSUE)
        code = record.verification_code or await self._unique_code()
        updated = record.with_history(
            action=HistoryAction.ISSUED,
            performed_by=actor.user_id,
            details=comments or "Certificate issued",
            new_status=target,
            issuer=WorkflowStamp(
                actor_id=actor.user_id, timestamp=utcnow(), comments=comments
            ),
            verification_code=code,
            is_verified=True,
        )
        return await self.commit(record, updated, Action.ISSUE, actor)

    async def revoke(
        self, certificate_id: str, actor: Principal, *, reason: str
    ) -> CertificateRecord:
        self._check_permission(actor, Action.REVOKE, certificate_id)
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("Revocation reason is required")
        record = await self.load(certificate_id)
        target = self.target_status(record, Action.REVOKE)
        updated = record.with_history(
            action=HistoryAction.REVOKED,
            performed_by=actor.user_id,
            details=f"Certificate revoked: {reason}",
            new_status=target,
            is_verified=False,
        )
        return await self.commit(record, updated, Action.REVOKE, actor)

    async def update(
        self,
        record: CertificateRecord,
        actor: Principal,
        *,
        details: str = "Certificate updated",
        **changes: object,
    ) -> CertificateRecord:
        """Apply editable-field ``changes`` to a PENDING ``record``."""
        self.check_owner(record, actor, Action.UPDATE)
        target = self.target_status(record, Action.UPDATE)
        updated = record.with_history(
            action=HistoryAction.UPDATED,
            performed_by=actor.user_id,
            details=details,
            new_status=target,
            **changes,
        )
        return await self.commit(record, updated, Action.UPDATE, actor)

    def check_deletable(self, record: CertificateRecord, actor: Principal) -> None:
        self.check_owner(record, actor, Action.DELETE)
        if record.status != CertificateStatus.PENDING:
            CERTIFICATE_TRANSITIONS.labels(Action.DELETE.value, "invalid").inc()
            raise InvalidTransition(
                f"Cannot delete a certificate in status {record.status.value}",
                current_status=record.status.value,
            )

    async def delete(self, record: CertificateRecord, actor: Principal) -> None:
        self.check_deletable(record, actor)
        deleted = await self._repo.delete_if_pending(
            record.certificate_id, record.version
        )
        if not deleted:
            CERTIFICATE_TRANSITIONS.labels(Action.DELETE.value, "invalid").inc()
            raise InvalidTransition(
                f"Certificate {record.certificate_id} was modified concurrently",
                current_status=record.status.value,
            )
        CERTIFICATE_TRANSITIONS.labels(Action.DELETE.value, "ok").inc()
        logger.info(
            "Certificate deleted",
            extra={
                "certificate_id": record.certificate_id,
                "actor_id": actor.user_id,
                "action": Action.DELETE.value,
            },
        )

    async def record_anchor(
        self,
        record: CertificateRecord,
        actor: Principal,
        *,
        tx_id: str,
        block_height: int,
    ) -> CertificateRecord:
        if record.status not in ANCHORABLE:
            CERTIFICATE_TRANSITIONS.labels(Action.ANCHOR.value, "invalid").inc()
            raise InvalidTransition(
                f"Cannot anchor a certificate in status {record.status.value}",
                current_status=record.status.value,
            )
        anchored_at = utcnow()
        updated = record.with_history(
            action=HistoryAction.ANCHORED,
            performed_by=actor.user_id,
            details=f"Anchored in block {block_height} (tx {tx_id})",
            anchor=AnchorInfo(
                tx_id=tx_id, block_height=block_height, anchored_at=anchored_at
            ),
        )
        return await self.commit(record, updated, Action.ANCHOR, actor)

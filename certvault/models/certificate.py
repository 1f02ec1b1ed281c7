from __future__ import annotations

import datetime
import secrets
import string
from dataclasses import dataclass, field, replace
from enum import StrEnum
from typing import Any


class CertificateStatus(StrEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    REVOKED = "revoked"


class CertificateType(StrEnum):
    ACADEMIC = "academic"
    PROFESSIONAL = "professional"
    TRAINING = "training"
    ACHIEVEMENT = "achievement"


class HistoryAction(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    APPROVED = "approved"
    REJECTED = "rejected"
    ISSUED = "issued"
    REVOKED = "revoked"
    ANCHORED = "anchored"


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


# Contact formats shared by the JSON API and upload ingestion.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]{2,}$"
WALLET_PATTERN = r"^0x[a-fA-F0-9]{40}$"

_BASE36 = string.digits + string.ascii_uppercase


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_certificate_id(now: datetime.datetime | None = None) -> str:
    """CERT-<base36 epoch ms>-<5 random base36 chars>, upper-case."""
    now = now or utcnow()
    stamp = _to_base36(int(now.timestamp() * 1000))
    suffix = "".join(secrets.choice(_BASE36) for _ in range(5))
    return f"CERT-{stamp}-{suffix}"


@dataclass(frozen=True, slots=True)
class Recipient:
    student_id: str
    name: str
    email: str | None = None
    wallet_address: str | None = None


@dataclass(frozen=True, slots=True)
class Institution:
    name: str
    department: str | None = None


@dataclass(frozen=True, slots=True)
class Course:
    subject: str
    grade: str | None = None
    credits: float | None = None
    completion_date: datetime.date | None = None
    duration: str | None = None


@dataclass(frozen=True, slots=True)
class WorkflowStamp:
    """Who performed a verifier/issuer step, when, and why."""

    actor_id: str
    timestamp: datetime.datetime
    comments: str = ""


@dataclass(frozen=True, slots=True)
class AnchorInfo:
    tx_id: str
    block_height: int
    anchored_at: datetime.datetime


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    action: HistoryAction
    performed_by: str
    timestamp: datetime.datetime
    details: str
    previous_status: CertificateStatus | None
    new_status: CertificateStatus


@dataclass(frozen=True, slots=True)
class CertificateDraft:
    """Validated candidate data before a record exists.

    Produced by the ingestion pipeline or the single-create path.
    ``certificate_id`` is optional; the service generates one when absent.
    """

    title: str
    type: CertificateType
    recipient: Recipient
    institution: Institution
    course: Course
    description: str | None = None
    certificate_id: str | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class CertificateRecord:
    """The persisted certificate.

    Frozen: every change produces a new instance via ``dataclasses.replace``
    and goes through the repository's compare-and-swap.  ``encryption_key``
    is excluded from ``repr`` and from ``to_public_dict``.
    """

    certificate_id: str
    content_hash: str
    title: str
    type: CertificateType
    recipient: Recipient
    institution: Institution
    course: Course
    creator_id: str
    external_content_id: str
    encryption_key: str = field(repr=False)
    status: CertificateStatus = CertificateStatus.PENDING
    description: str | None = None
    is_encrypted: bool = True
    verifier: WorkflowStamp | None = None
    issuer: WorkflowStamp | None = None
    verification_code: str | None = None
    is_verified: bool = False
    anchor: AnchorInfo | None = None
    batch_id: str | None = None
    tags: tuple[str, ...] = ()
    history: tuple[HistoryEntry, ...] = ()
    version: int = 1
    created_at: datetime.datetime = field(default_factory=utcnow)
    updated_at: datetime.datetime = field(default_factory=utcnow)

    @staticmethod
    def new(
        *,
        draft: CertificateDraft,
        certificate_id: str,
        content_hash: str,
        creator_id: str,
        external_content_id: str,
        encryption_key: str,
        batch_id: str | None = None,
    ) -> CertificateRecord:
        now = utcnow()
        created = HistoryEntry(
            action=HistoryAction.CREATED,
            performed_by=creator_id,
            timestamp=now,
            details="Certificate created",
            previous_status=None,
            new_status=CertificateStatus.PENDING,
        )
        return CertificateRecord(
            certificate_id=certificate_id,
            content_hash=content_hash,
            title=draft.title,
            type=draft.type,
            description=draft.description,
            recipient=draft.recipient,
            institution=draft.institution,
            course=draft.course,
            creator_id=creator_id,
            external_content_id=external_content_id,
            encryption_key=encryption_key,
            batch_id=batch_id,
            tags=draft.tags,
            history=(created,),
            created_at=now,
            updated_at=now,
        )

    def with_history(
        self,
        *,
        action: HistoryAction,
        performed_by: str,
        details: str = "",
        new_status: CertificateStatus | None = None,
        **changes: Any,
    ) -> CertificateRecord:
        """Return a copy with ``changes`` applied and one history entry appended.

        The entry records the status before and after the change, so
        consecutive entries always chain.
        """
        now = utcnow()
        target = new_status or self.status
        entry = HistoryEntry(
            action=action,
            performed_by=performed_by,
            timestamp=now,
            details=details,
            previous_status=self.status,
            new_status=target,
        )
        return replace(
            self,
            status=target,
            history=self.history + (entry,),
            updated_at=now,
            **changes,
        )

    def payload_dict(self) -> dict[str, Any]:
        """The full certificate content stored encrypted in the blob store."""
        return {
            "certificateId": self.certificate_id,
            "title": self.title,
            "type": self.type.value,
            "description": self.description,
            "recipient": _recipient_dict(self.recipient),
            "institution": _institution_dict(self.institution),
            "course": _course_dict(self.course),
            "contentHash": self.content_hash,
            "tags": list(self.tags),
        }

    def to_public_dict(self) -> dict[str, Any]:
        """Default external representation. Never includes ``encryption_key``."""
        return {
            **self.payload_dict(),
            "status": self.status.value,
            "creatorId": self.creator_id,
            "verifier": _stamp_dict(self.verifier),
            "issuer": _stamp_dict(self.issuer),
            "externalContentId": self.external_content_id,
            "isEncrypted": self.is_encrypted,
            "verificationCode": self.verification_code,
            "isVerified": self.is_verified,
            "anchor": (
                {
                    "txId": self.anchor.tx_id,
                    "blockHeight": self.anchor.block_height,
                    "anchoredAt": self.anchor.anchored_at.isoformat(),
                }
                if self.anchor
                else None
            ),
            "batchId": self.batch_id,
            "history": [_history_dict(h) for h in self.history],
            "version": self.version,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


def _recipient_dict(r: Recipient) -> dict[str, Any]:
    return {
        "studentId": r.student_id,
        "name": r.name,
        "email": r.email,
        "walletAddress": r.wallet_address,
    }


def _institution_dict(i: Institution) -> dict[str, Any]:
    return {"name": i.name, "department": i.department}


def _course_dict(c: Course) -> dict[str, Any]:
    return {
        "subject": c.subject,
        "grade": c.grade,
        "credits": c.credits,
        "completionDate": c.completion_date.isoformat() if c.completion_date else None,
        "duration": c.duration,
    }


def _stamp_dict(s: WorkflowStamp | None) -> dict[str, Any] | None:
    if s is None:
        return None
    return {
        "actorId": s.actor_id,
        "timestamp": s.timestamp.isoformat(),
        "comments": s.comments,
    }


def _history_dict(h: HistoryEntry) -> dict[str, Any]:
    return {
        "action": h.action.value,
        "performedBy": h.performed_by,
        "timestamp": h.timestamp.isoformat(),
        "details": h.details,
        "previousStatus": h.previous_status.value if h.previous_status else None,
        "newStatus": h.new_status.value,
    }

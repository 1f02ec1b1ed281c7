"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError as SqlIntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from certvault.core.errors import ValidationError
from certvault.db.tables import CertificateRow
from certvault.models.certificate import (
    AnchorInfo,
    CertificateRecord,
    CertificateStatus,
    CertificateType,
    Course,
    HistoryAction,
    HistoryEntry,
    Institution,
    Recipient,
    WorkflowStamp,
)


class PgCertificateRepo:
    """Satisfies the CertificateRepo Protocol using PostgreSQL.

    Each call runs in its own short transaction.  ``compare_and_swap`` is a
    single ``UPDATE ... WHERE status = :expected AND version = :expected``;
    a rowcount of zero means another writer got there first.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def add(self, record: CertificateRecord) -> None:
        async with self._session_factory() as session:
            session.add(CertificateRow(**_record_to_columns(record)))
            try:
                await session.commit()
            except SqlIntegrityError:
                await session.rollback()
                raise ValidationError(
                    f"Certificate {record.certificate_id} already exists"
                ) from None

    async def _get_one(self, *criteria: Any) -> CertificateRecord | None:
        async with self._session_factory() as session:
            stmt = select(CertificateRow).where(*criteria)
            row = (await session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_record(row)

    async def get(self, certificate_id: str) -> CertificateRecord | None:
        return await self._get_one(CertificateRow.certificate_id == certificate_id)

    async def get_by_verification_code(self, code: str) -> CertificateRecord | None:
        return await self._get_one(CertificateRow.verification_code == code)

    async def get_by_content_hash(self, content_hash: str) -> CertificateRecord | None:
        return await self._get_one(CertificateRow.content_hash == content_hash)

    async def list(
        self,
        *,
        status: CertificateStatus | None = None,
        creator_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CertificateRecord]:
        stmt = select(CertificateRow)
        if status is not None:
            stmt = stmt.where(CertificateRow.status == status.value)
        if creator_id is not None:
            stmt = stmt.where(CertificateRow.creator_id == creator_id)
        stmt = (
            stmt.order_by(CertificateRow.created_at.desc()).limit(limit).offset(offset)
        )
        async with self._session_factory() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_row_to_record(r) for r in rows]

    async def compare_and_swap(
        self,
        updated: CertificateRecord,
        expected_status: CertificateStatus,
        expected_version: int,
    ) -> bool:
        values = _record_to_columns(updated)
        del values["certificate_id"]
        stmt = (
            update(CertificateRow)
            .where(CertificateRow.certificate_id == updated.certificate_id)
            .where(CertificateRow.status == expected_status.value)
            .where(CertificateRow.version == expected_version)
            .values(**values)
        )
        async with self._session_factory() as session:
            try:
                result = await session.execute(stmt)
                await session.commit()
            except SqlIntegrityError:
                await session.rollback()
                return False  # verification code taken concurrently
        return result.rowcount == 1

    async def delete_if_pending(self, certificate_id: str, expected_version: int) -> bool:
        stmt = (
            delete(CertificateRow)
            .where(CertificateRow.certificate_id == certificate_id)
            .where(CertificateRow.status == CertificateStatus.PENDING.value)
            .where(CertificateRow.version == expected_version)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
        return result.rowcount == 1


# ---------------------------------------------------------------------------
# Row <-> dataclass conversion
# ---------------------------------------------------------------------------


def _dt(value: datetime.datetime) -> str:
    return value.isoformat()


def _parse_dt(value: str) -> datetime.datetime:
    return datetime.datetime.fromisoformat(value)


def _stamp_to_json(stamp: WorkflowStamp | None) -> dict[str, Any] | None:
    if stamp is None:
        return None
    return {
        "actor_id": stamp.actor_id,
        "timestamp": _dt(stamp.timestamp),
        "comments": stamp.comments,
    }


def _stamp_from_json(data: dict[str, Any] | None) -> WorkflowStamp | None:
    if data is None:
        return None
    return WorkflowStamp(
        actor_id=data["actor_id"],
        timestamp=_parse_dt(data["timestamp"]),
        comments=data.get("comments", ""),
    )


def _record_to_columns(record: CertificateRecord) -> dict[str, Any]:
    course = record.course
    return {
        "certificate_id": record.certificate_id,
        "content_hash": record.content_hash,
        "title": record.title,
        "type": record.type.value,
        "description": record.description,
        "status": record.status.value,
        "creator_id": record.creator_id,
        "external_content_id": record.external_content_id,
        "encryption_key": record.encryption_key,
        "is_encrypted": record.is_encrypted,
        "verification_code": record.verification_code,
        "is_verified": record.is_verified,
        "batch_id": record.batch_id,
        "tags": list(record.tags),
        "recipient": {
            "student_id": record.recipient.student_id,
            "name": record.recipient.name,
            "email": record.recipient.email,
            "wallet_address": record.recipient.wallet_address,
        },
        "institution": {
            "name": record.institution.name,
            "department": record.institution.department,
        },
        "course": {
            "subject": course.subject,
            "grade": course.grade,
            "credits": course.credits,
            "completion_date": (
                course.completion_date.isoformat() if course.completion_date else None
            ),
            "duration": course.duration,
        },
        "verifier": _stamp_to_json(record.verifier),
        "issuer": _stamp_to_json(record.issuer),
        "anchor": (
            {
                "tx_id": record.anchor.tx_id,
                "block_height": record.anchor.block_height,
                "anchored_at": _dt(record.anchor.anchored_at),
            }
            if record.anchor
            else None
        ),
        "history": [
            {
                "action": h.action.value,
                "performed_by": h.performed_by,
                "timestamp": _dt(h.timestamp),
                "details": h.details,
                "previous_status": h.previous_status.value if h.previous_status else None,
                "new_status": h.new_status.value,
            }
            for h in record.history
        ],
        "version": record.version,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def _row_to_record(row: CertificateRow) -> CertificateRecord:
    course = row.course
    return CertificateRecord(
        certificate_id=row.certificate_id,
        content_hash=row.content_hash,
        title=row.title,
        type=CertificateType(row.type),
        description=row.description,
        status=CertificateStatus(row.status),
        creator_id=row.creator_id,
        external_content_id=row.external_content_id,
        encryption_key=row.encryption_key,
        is_encrypted=row.is_encrypted,
        verification_code=row.verification_code,
        is_verified=row.is_verified,
        batch_id=row.batch_id,
        tags=tuple(row.tags or ()),
        recipient=Recipient(**row.recipient),
        institution=Institution(**row.institution),
        course=Course(
            subject=course["subject"],
            grade=course.get("grade"),
            credits=course.get("credits"),
            completion_date=(
                datetime.date.fromisoformat(course["completion_date"])
                if course.get("completion_date")
                else None
            ),
            duration=course.get("duration"),
        ),
        verifier=_stamp_from_json(row.verifier),
        issuer=_stamp_from_json(row.issuer),
        anchor=(
            AnchorInfo(
                tx_id=row.anchor["tx_id"],
                block_height=row.anchor["block_height"],
                anchored_at=_parse_dt(row.anchor["anchored_at"]),
            )
            if row.anchor
            else None
        ),
        history=tuple(
            HistoryEntry(
                action=HistoryAction(h["action"]),
                performed_by=h["performed_by"],
                timestamp=_parse_dt(h["timestamp"]),
                details=h.get("details", ""),
                previous_status=(
                    CertificateStatus(h["previous_status"])
                    if h.get("previous_status")
                    else None
                ),
                new_status=CertificateStatus(h["new_status"]),
            )
            for h in row.history
        ),
        version=row.version,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )

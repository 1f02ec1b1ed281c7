from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from certvault.core.errors import ValidationError
from certvault.models.certificate import CertificateRecord, CertificateStatus


@runtime_checkable
class CertificateRepo(Protocol):
    async def add(self, record: CertificateRecord) -> None: ...
    async def get(self, certificate_id: str) -> CertificateRecord | None: ...
    async def get_by_verification_code(self, code: str) -> CertificateRecord | None: ...
    async def get_by_content_hash(self, content_hash: str) -> CertificateRecord | None: ...
    async def list(
        self,
        *,
        status: CertificateStatus | None = None,
        creator_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CertificateRecord]: ...
    async def compare_and_swap(
        self,
        updated: CertificateRecord,
        expected_status: CertificateStatus,
        expected_version: int,
    ) -> bool: ...
    async def delete_if_pending(
        self, certificate_id: str, expected_version: int
    ) -> bool: ...


class InMemoryCertificateRepo:
    """Dict-backed repository.

    ``compare_and_swap`` and ``delete_if_pending`` hold a lock across the
    check and the write, so of two racing writers against the same
    (status, version) exactly one succeeds.
    """

    def __init__(self) -> None:
        self._by_id: dict[str, CertificateRecord] = {}
        self._lock = threading.Lock()

    async def add(self, record: CertificateRecord) -> None:
        with self._lock:
            if record.certificate_id in self._by_id:
                raise ValidationError(
                    f"Certificate {record.certificate_id} already exists"
                )
            self._by_id[record.certificate_id] = record

    async def get(self, certificate_id: str) -> CertificateRecord | None:
        return self._by_id.get(certificate_id)

    async def get_by_verification_code(self, code: str) -> CertificateRecord | None:
        for record in self._by_id.values():
            if record.verification_code == code:
                return record
        return None

    async def get_by_content_hash(self, content_hash: str) -> CertificateRecord | None:
        for record in self._by_id.values():
            if record.content_hash == content_hash:
                return record
        return None

    async def list(
        self,
        *,
        status: CertificateStatus | None = None,
        creator_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CertificateRecord]:
        records = [
            r
            for r in self._by_id.values()
            if (status is None or r.status == status)
            and (creator_id is None or r.creator_id == creator_id)
        ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[offset : offset + limit]

    async def compare_and_swap(
        self,
        updated: CertificateRecord,
        expected_status: CertificateStatus,
        expected_version: int,
    ) -> bool:
        with self._lock:
            current = self._by_id.get(updated.certificate_id)
            if current is None:
                return False
            if current.status != expected_status or current.version != expected_version:
                return False
            self._by_id[updated.certificate_id] = updated
            return True

    async def delete_if_pending(self, certificate_id: str, expected_version: int) -> bool:
        with self._lock:
            current = self._by_id.get(certificate_id)
            if current is None:
                return False
            if (
                current.status != CertificateStatus.PENDING
                or current.version != expected_version
            ):
                return False
            del self._by_id[certificate_id]
            return True

    def clear(self) -> None:
        with self._lock:
            self._by_id.clear()

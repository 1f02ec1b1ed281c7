"""Public certificate verification.

Third parties look a certificate up by its verification code or by its
content hash, without authenticating.  Only certificates that reached
ISSUED are visible; a revoked certificate is still found but reported as
not valid.  ``valid`` also requires that the record's identity fields still
hash to the stored content hash.

Results are cached (read-through, TTL) and invalidated by the lifecycle
whenever a certificate changes.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from typing import Any

from certvault.core.errors import CertVaultError, NotFoundError, ValidationError
from certvault.core.metrics import CACHE_OPERATIONS
from certvault.models.batch import BatchOutcome, ItemOutcome
from certvault.models.certificate import CertificateRecord, CertificateStatus
from certvault.repos.certificate_repo import CertificateRepo
from certvault.services.cache import CacheService
from certvault.services.hashing import is_content_id, verify_certificate_hash
from certvault.services.lifecycle import normalize_verification_code

logger = logging.getLogger(__name__)

_CODE_RE = re.compile(r"^[0-9A-F]{32}$")

PUBLIC_STATUSES = frozenset({CertificateStatus.ISSUED, CertificateStatus.REVOKED})


def verification_view(record: CertificateRecord) -> dict[str, Any]:
    """What a verifier is shown.  No secrets, no blob pointer, no history."""
    intact = verify_certificate_hash(record, record.content_hash)
    issued = record.status == CertificateStatus.ISSUED
    course = record.course
    return {
        "valid": issued and record.is_verified and intact,
        "status": record.status.value,
        "revoked": record.status == CertificateStatus.REVOKED,
        "integrity": intact,
        "certificateId": record.certificate_id,
        "title": record.title,
        "type": record.type.value,
        "recipient": {"name": record.recipient.name},
        "institution": {
            "name": record.institution.name,
            "department": record.institution.department,
        },
        "course": {
            "subject": course.subject,
            "grade": course.grade,
            "completionDate": (
                course.completion_date.isoformat() if course.completion_date else None
            ),
        },
        "contentHash": record.content_hash,
        "issuedAt": record.issuer.timestamp.isoformat() if record.issuer else None,
        "anchor": (
            {"txId": record.anchor.tx_id, "blockHeight": record.anchor.block_height}
            if record.anchor
            else None
        ),
    }


class VerificationService:
    def __init__(
        self,
        repo: CertificateRepo,
        cache: CacheService,
        *,
        ttl_seconds: int = 300,
        bulk_max_size: int = 100,
    ) -> None:
        self._repo = repo
        self._cache = cache
        self._ttl = ttl_seconds
        self._bulk_max_size = bulk_max_size

    async def _lookup(self, key: str, load) -> dict[str, Any]:
        if self._ttl > 0:
            cached = await self._cache.get(key)
            if cached is not None:
                CACHE_OPERATIONS.labels(operation="hit").inc()
                return json.loads(cached)
            CACHE_OPERATIONS.labels(operation="miss").inc()

        record = await load()
        if record is None or record.status not in PUBLIC_STATUSES:
            raise NotFoundError("No issued certificate matches")
        view = verification_view(record)
        if self._ttl > 0:
            await self._cache.set(key, json.dumps(view), self._ttl)
        return view

    async def by_code(self, code: str) -> dict[str, Any]:
        normalized = normalize_verification_code(code or "")
        if not _CODE_RE.match(normalized):
            raise ValidationError("Verification code must be 32 hexadecimal characters")
        view = await self._lookup(
            f"code:{normalized}",
            lambda: self._repo.get_by_verification_code(normalized),
        )
        logger.info("Verification by code  valid=%s", view["valid"])
        return view

    async def by_hash(self, content_hash: str) -> dict[str, Any]:
        normalized = (content_hash or "").strip().lower()
        if not is_content_id(normalized):
            raise ValidationError("Content hash must be 0x followed by 64 hex characters")
        return await self._lookup(
            f"hash:{normalized}",
            lambda: self._repo.get_by_content_hash(normalized),
        )

    async def bulk(self, codes: Sequence[str]) -> BatchOutcome:
        if not codes:
            raise ValidationError("No verification codes supplied")
        if len(codes) > self._bulk_max_size:
            raise ValidationError(
                f"At most {self._bulk_max_size} codes can be verified at once"
            )
        items = []
        for index, code in enumerate(codes):
            try:
                view = await self.by_code(code)
            except CertVaultError as exc:
                items.append(
                    ItemOutcome(index=index, ok=False, identifier=code, error=str(exc))
                )
                continue
            items.append(
                ItemOutcome(index=index, ok=view["valid"], identifier=code, detail=view)
            )
        return BatchOutcome(items=tuple(items))

    async def invalidate(self, record: CertificateRecord) -> None:
        keys = [f"hash:{record.content_hash}"]
        if record.verification_code:
            keys.append(f"code:{record.verification_code}")
        await self._cache.delete(*keys)

"""Certificate creation, edits, payload recovery and anchoring.

Creation pipeline for one draft:

  assign id -> canonicalize + hash -> fresh per-record secret
  -> encrypt payload -> blob store put -> repository add (PENDING)

The record only ever references a blob whose ``put`` has completed.  If
the put fails nothing is persisted; if the repository add fails the new
blob is unpinned.  Key derivation is CPU-bound and runs in a worker
thread so batch creation does not stall the event loop.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import uuid
from collections.abc import Mapping, Sequence
from typing import Any

from certvault.core.errors import (
    CertVaultError,
    IntegrityError,
    NotFoundError,
    PermissionDenied,
    ValidationError,
)
from certvault.models.batch import BatchOutcome, BatchParseResult, ItemOutcome
from certvault.models.certificate import (
    CertificateDraft,
    CertificateRecord,
    CertificateStatus,
    CertificateType,
    generate_certificate_id,
)
from certvault.models.principal import (
    CREATE_CERTIFICATES,
    ISSUE_CERTIFICATES,
    VERIFY_CERTIFICATES,
    VIEW_ALL_CERTIFICATES,
    Principal,
)
from certvault.repos.certificate_repo import CertificateRepo
from certvault.services.blob_store import BlobStore
from certvault.services.encryption import CertificateEnvelope, EncryptionEngine
from certvault.services.hashing import certificate_hash, verify_certificate_hash
from certvault.services.ingestion import IngestionPipeline
from certvault.services.ledger import Ledger
from certvault.services.lifecycle import Action, LifecycleService

logger = logging.getLogger(__name__)

# Permissions that let an actor see certificates created by someone else.
_REVIEWER_PERMISSIONS = (VIEW_ALL_CERTIFICATES, VERIFY_CERTIFICATES, ISSUE_CERTIFICATES)

# PATCH keys -> where they land.  Identity fields are absent on purpose:
# the content hash never changes after creation.
EDITABLE_FIELDS = (
    "title",
    "description",
    "type",
    "tags",
    "email",
    "walletAddress",
    "department",
    "credits",
    "duration",
)


def generate_batch_id() -> str:
    return f"BATCH-{uuid.uuid4().hex[:16].upper()}"


class CertificateService:
    def __init__(
        self,
        *,
        repo: CertificateRepo,
        engine: EncryptionEngine,
        blob_store: BlobStore,
        ledger: Ledger,
        lifecycle: LifecycleService,
        batch_max_size: int = 100,
    ) -> None:
        self._repo = repo
        self._engine = engine
        self._blob_store = blob_store
        self._ledger = ledger
        self._lifecycle = lifecycle
        self._batch_max_size = batch_max_size

    # -- access -------------------------------------------------------------

    @staticmethod
    def can_view_all(actor: Principal) -> bool:
        return any(actor.has_permission(p) for p in _REVIEWER_PERMISSIONS)

    def _check_view(self, record: CertificateRecord, actor: Principal) -> None:
        if actor.user_id == record.creator_id or self.can_view_all(actor):
            return
        raise PermissionDenied("Not allowed to view this certificate")

    def _check_batch_size(self, size: int) -> None:
        if size == 0:
            raise ValidationError("Batch is empty")
        if size > self._batch_max_size:
            raise ValidationError(
                f"Batch size {size} exceeds the limit of {self._batch_max_size}"
            )

    async def _release_blob(self, content_id: str) -> None:
        """Best-effort unpin; failures are logged and swallowed."""
        try:
            await self._blob_store.unpin(content_id)
        except CertVaultError as exc:
            logger.warning("Blob unpin failed  cid=%s: %s", content_id, exc)

    async def _store_payload(self, record: CertificateRecord) -> str:
        envelope = await asyncio.to_thread(
            self._engine.encrypt_certificate,
            record.payload_dict(),
            record.encryption_key,
        )
        return await self._blob_store.put(
            envelope.to_bytes(),
            {"name": f"{record.certificate_id}.json", "certificateId": record.certificate_id},
        )

    # -- creation -----------------------------------------------------------

    async def create(
        self,
        draft: CertificateDraft,
        actor: Principal,
        *,
        batch_id: str | None = None,
    ) -> CertificateRecord:
        if not actor.has_permission(CREATE_CERTIFICATES):
            raise PermissionDenied(f"{CREATE_CERTIFICATES} permission required")
        if not draft.title.strip():
            raise ValidationError("title is required")

        certificate_id = (draft.certificate_id or generate_certificate_id()).strip()
        draft = dataclasses.replace(draft, certificate_id=certificate_id)
        content_hash = certificate_hash(draft)

        if await self._repo.get(certificate_id) is not None:
            raise ValidationError(f"Certificate {certificate_id} already exists")
        if await self._repo.get_by_content_hash(content_hash) is not None:
            raise ValidationError(
                "A certificate with identical content already exists"
            )

        record = CertificateRecord.new(
            draft=draft,
            certificate_id=certificate_id,
            content_hash=content_hash,
            creator_id=actor.user_id,
            external_content_id="",
            encryption_key=self._engine.generate_secure_password(),
            batch_id=batch_id,
        )
        content_id = await self._store_payload(record)
        record = dataclasses.replace(record, external_content_id=content_id)

        try:
            await self._repo.add(record)
        except CertVaultError:
            await self._release_blob(content_id)
            raise

        logger.info(
            "Certificate created  hash=%s",
            content_hash,
            extra={
                "certificate_id": certificate_id,
                "actor_id": actor.user_id,
                "action": "create",
            },
        )
        return record

    async def batch_create(
        self,
        drafts: Sequence[CertificateDraft],
        actor: Principal,
        *,
        indices: Sequence[int] | None = None,
    ) -> tuple[str, BatchOutcome]:
        """Create each draft independently; one failure never stops the rest."""
        self._check_batch_size(len(drafts))
        if not actor.has_permission(CREATE_CERTIFICATES):
            raise PermissionDenied(f"{CREATE_CERTIFICATES} permission required")
        batch_id = generate_batch_id()
        positions = list(indices) if indices is not None else list(range(len(drafts)))

        items = []
        for index, draft in zip(positions, drafts, strict=True):
            try:
                record = await self.create(draft, actor, batch_id=batch_id)
            except CertVaultError as exc:
                items.append(ItemOutcome(index=index, ok=False, error=str(exc)))
                continue
            items.append(
                ItemOutcome(
                    index=index,
                    ok=True,
                    identifier=record.certificate_id,
                    detail={
                        "contentHash": record.content_hash,
                        "externalContentId": record.external_content_id,
                    },
                )
            )

        outcome = BatchOutcome(items=tuple(items))
        logger.info(
            "Batch %s created  total=%d succeeded=%d failed=%d",
            batch_id,
            outcome.total,
            outcome.succeeded,
            outcome.failed,
        )
        return batch_id, outcome

    async def create_from_upload(
        self, parsed: BatchParseResult, actor: Principal
    ) -> tuple[str, BatchOutcome]:
        """Create certificates for the valid rows of an ingestion result."""
        if not parsed.can_proceed:
            raise ValidationError("Upload contains no valid rows")
        drafts = [IngestionPipeline.to_draft(row.data) for row in parsed.results]
        return await self.batch_create(
            drafts, actor, indices=[row.row_index for row in parsed.results]
        )

    # -- reads --------------------------------------------------------------

    async def get(self, certificate_id: str, actor: Principal) -> CertificateRecord:
        record = await self._lifecycle.load(certificate_id)
        self._check_view(record, actor)
        return record

    async def list(
        self,
        actor: Principal,
        *,
        status: CertificateStatus | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[CertificateRecord]:
        creator_id = None if self.can_view_all(actor) else actor.user_id
        return await self._repo.list(
            status=status, creator_id=creator_id, limit=limit, offset=offset
        )

    async def get_payload(self, certificate_id: str, actor: Principal) -> dict[str, Any]:
        """Fetch, decrypt and integrity-check the stored payload."""
        record = await self.get(certificate_id, actor)
        raw = await self._blob_store.get(record.external_content_id)
        envelope = CertificateEnvelope.from_bytes(raw)
        payload = await asyncio.to_thread(
            self._engine.decrypt_certificate,
            envelope,
            record.encryption_key,
            expected_certificate_id=record.certificate_id,
        )
        if payload.get("contentHash") != record.content_hash or not verify_certificate_hash(
            record, record.content_hash
        ):
            raise IntegrityError("stored payload does not match the certificate hash")
        return payload

    # -- PENDING edits ------------------------------------------------------

    def _apply_changes(
        self, record: CertificateRecord, changes: Mapping[str, Any]
    ) -> dict[str, Any]:
        unknown = sorted(set(changes) - set(EDITABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Fields cannot be updated: {', '.join(unknown)}",
                errors=[f"{name} is not editable" for name in unknown],
            )
        if not changes:
            raise ValidationError("No fields to update")

        out: dict[str, Any] = {}
        if "title" in changes:
            title = str(changes["title"] or "").strip()
            if not title:
                raise ValidationError("title is required")
            out["title"] = title
        if "description" in changes:
            out["description"] = changes["description"]
        if "type" in changes:
            try:
                out["type"] = CertificateType(changes["type"])
            except ValueError:
                raise ValidationError(f"Unknown certificate type {changes['type']!r}") from None
        if "tags" in changes:
            out["tags"] = tuple(changes["tags"] or ())

        recipient = {
            k: changes[src].lower() if changes[src] else None
            for src, k in (("email", "email"), ("walletAddress", "wallet_address"))
            if src in changes
        }
        if recipient:
            out["recipient"] = dataclasses.replace(record.recipient, **recipient)
        if "department" in changes:
            out["institution"] = dataclasses.replace(
                record.institution, department=changes["department"]
            )
        course = {k: changes[k] for k in ("credits", "duration") if k in changes}
        if course:
            out["course"] = dataclasses.replace(record.course, **course)
        return out

    async def update(
        self, certificate_id: str, actor: Principal, changes: Mapping[str, Any]
    ) -> CertificateRecord:
        record = await self._lifecycle.load(certificate_id)
        self._lifecycle.check_owner(record, actor, Action.UPDATE)
        self._lifecycle.target_status(record, Action.UPDATE)
        applied = self._apply_changes(record, changes)

        candidate = dataclasses.replace(record, **applied)
        new_content_id = await self._store_payload(candidate)
        try:
            updated = await self._lifecycle.update(
                record,
                actor,
                details=f"Updated fields: {', '.join(sorted(changes))}",
                external_content_id=new_content_id,
                **applied,
            )
        except CertVaultError:
            if new_content_id != record.external_content_id:
                await self._release_blob(new_content_id)
            raise

        if record.external_content_id != new_content_id:
            await self._release_blob(record.external_content_id)
        return updated

    async def delete(self, certificate_id: str, actor: Principal) -> None:
        record = await self._lifecycle.load(certificate_id)
        await self._lifecycle.delete(record, actor)
        await self._release_blob(record.external_content_id)

    # -- anchoring ----------------------------------------------------------

    async def anchor(self, certificate_id: str, actor: Principal) -> CertificateRecord:
        if not actor.has_permission(ISSUE_CERTIFICATES):
            raise PermissionDenied(f"{ISSUE_CERTIFICATES} permission required")
        record = await self._lifecycle.load(certificate_id)
        if record.anchor is not None:
            return record
        if not verify_certificate_hash(record, record.content_hash):
            raise IntegrityError("certificate fields no longer match the content hash")
        receipt = await self._ledger.anchor(
            record.content_hash, {"certificateId": record.certificate_id}
        )
        return await self._lifecycle.record_anchor(
            record, actor, tx_id=receipt.tx_id, block_height=receipt.block_height
        )

    async def batch_anchor(
        self, certificate_ids: Sequence[str], actor: Principal
    ) -> BatchOutcome:
        self._check_batch_size(len(certificate_ids))
        items = []
        for index, certificate_id in enumerate(certificate_ids):
            try:
                record = await self.anchor(certificate_id, actor)
            except CertVaultError as exc:
                items.append(
                    ItemOutcome(
                        index=index, ok=False, identifier=certificate_id, error=str(exc)
                    )
                )
                continue
            anchor = record.anchor
            items.append(
                ItemOutcome(
                    index=index,
                    ok=True,
                    identifier=certificate_id,
                    detail=(
                        {"txId": anchor.tx_id, "blockHeight": anchor.block_height}
                        if anchor
                        else {}
                    ),
                )
            )
        return BatchOutcome(items=tuple(items))

    async def verify_anchored(self, certificate_id: str) -> bool:
        """True when the record is intact and its hash is present on the ledger."""
        record = await self._repo.get(certificate_id)
        if record is None:
            raise NotFoundError(f"Certificate {certificate_id} not found")
        if not verify_certificate_hash(record, record.content_hash):
            return False
        return await self._ledger.verify_anchored(record.content_hash)

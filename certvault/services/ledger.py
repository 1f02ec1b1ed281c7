"""Ledger collaborator: anchors content hashes as proof of existence.

The core treats the content id as an opaque ``0x``-prefixed hex string and
never encodes anything ledger-specific beyond it.  Network and gas
plumbing belong to a concrete adapter; this module ships the interface and
an in-memory ledger used in tests and dev.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable

from certvault.core.errors import ExternalCollaboratorError
from certvault.core.metrics import EXTERNAL_CALLS

logger = logging.getLogger(__name__)

COLLABORATOR = "ledger"


@dataclass(frozen=True, slots=True)
class AnchorReceipt:
    tx_id: str
    block_height: int


@runtime_checkable
class Ledger(Protocol):
    async def anchor(
        self, content_id: str, metadata: Mapping[str, Any] | None = None
    ) -> AnchorReceipt: ...

    async def verify_anchored(self, content_id: str) -> bool: ...


class InMemoryLedger:
    """Append-only dict ledger.  One block per anchor call.

    Anchoring an id that is already present returns the original receipt.
    """

    def __init__(self, *, genesis_height: int = 1) -> None:
        self._entries: dict[str, AnchorReceipt] = {}
        self._height = genesis_height - 1
        self._lock = threading.Lock()
        self.fail_next: str | None = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next == operation:
            self.fail_next = None
            EXTERNAL_CALLS.labels(COLLABORATOR, operation, "error").inc()
            raise ExternalCollaboratorError(COLLABORATOR, operation, "simulated outage")

    async def anchor(
        self, content_id: str, metadata: Mapping[str, Any] | None = None
    ) -> AnchorReceipt:
        self._maybe_fail("anchor")
        with self._lock:
            receipt = self._entries.get(content_id)
            if receipt is None:
                self._height += 1
                tx_id = "0x" + hashlib.sha256(
                    f"{content_id}:{self._height}".encode()
                ).hexdigest()
                receipt = AnchorReceipt(tx_id=tx_id, block_height=self._height)
                self._entries[content_id] = receipt
        EXTERNAL_CALLS.labels(COLLABORATOR, "anchor", "ok").inc()
        logger.info(
            "Content anchored  content_id=%s block=%d", content_id, receipt.block_height
        )
        return receipt

    async def verify_anchored(self, content_id: str) -> bool:
        self._maybe_fail("verify")
        EXTERNAL_CALLS.labels(COLLABORATOR, "verify", "ok").inc()
        return content_id in self._entries

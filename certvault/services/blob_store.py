"""Content-addressed blob store collaborator.

The certificate core stores only ciphertext envelopes here and keeps the
returned content id on the record.  ``put`` must complete before a record
references its result; ``unpin`` is best-effort and its failures are logged
by the caller, never fatal to a record's lifecycle.

Two implementations:

  InMemoryBlobStore  -- tests and dev; the id is derived from the bytes, so
                        putting the same bytes twice is a no-op.
  IpfsHttpBlobStore  -- Kubo RPC API over httpx (add / cat / pin rm).
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

import httpx

from certvault.core.errors import ExternalCollaboratorError, NotFoundError
from certvault.core.metrics import EXTERNAL_CALLS

logger = logging.getLogger(__name__)

COLLABORATOR = "blob_store"

# Kubo answers a cat for an unknown or malformed CID with HTTP 500 and one of these.
_MISSING_MARKERS = ("not found", "could not find", "invalid cid", "invalid path")


def _is_missing(response: httpx.Response) -> bool:
    try:
        message = str(response.json().get("Message", ""))
    except (json.JSONDecodeError, AttributeError):
        message = response.text
    message = message.lower()
    return any(marker in message for marker in _MISSING_MARKERS)


@runtime_checkable
class BlobStore(Protocol):
    async def put(self, data: bytes, metadata: Mapping[str, Any] | None = None) -> str:
        """Store ``data`` and return its content id."""
        ...

    async def get(self, content_id: str) -> bytes:
        """Return the stored bytes.  Raises NotFoundError for unknown ids."""
        ...

    async def unpin(self, content_id: str) -> None: ...


class InMemoryBlobStore:
    """Dict-backed fake.  ``fail_next`` lets tests simulate an outage."""

    def __init__(self) -> None:
        self._blobs: dict[str, bytes] = {}
        self.metadata: dict[str, dict[str, Any]] = {}
        self.fail_next: str | None = None

    def _maybe_fail(self, operation: str) -> None:
        if self.fail_next == operation:
            self.fail_next = None
            EXTERNAL_CALLS.labels(COLLABORATOR, operation, "error").inc()
            raise ExternalCollaboratorError(COLLABORATOR, operation, "simulated outage")

    async def put(self, data: bytes, metadata: Mapping[str, Any] | None = None) -> str:
        self._maybe_fail("put")
        content_id = "mem-" + hashlib.sha256(data).hexdigest()
        self._blobs[content_id] = bytes(data)
        self.metadata[content_id] = dict(metadata or {})
        EXTERNAL_CALLS.labels(COLLABORATOR, "put", "ok").inc()
        return content_id

    async def get(self, content_id: str) -> bytes:
        self._maybe_fail("get")
        try:
            data = self._blobs[content_id]
        except KeyError:
            raise NotFoundError(f"Blob {content_id} not found") from None
        EXTERNAL_CALLS.labels(COLLABORATOR, "get", "ok").inc()
        return data

    async def unpin(self, content_id: str) -> None:
        self._maybe_fail("unpin")
        self._blobs.pop(content_id, None)
        self.metadata.pop(content_id, None)
        EXTERNAL_CALLS.labels(COLLABORATOR, "unpin", "ok").inc()

    def __contains__(self, content_id: str) -> bool:
        return content_id in self._blobs

    def __len__(self) -> int:
        return len(self._blobs)


class IpfsHttpBlobStore:
    """Blob store backed by an IPFS node's RPC API.

    ``client`` is injectable so tests can pass an ``httpx.AsyncClient``
    built on ``httpx.MockTransport``.  Transport errors and non-2xx
    responses surface as ExternalCollaboratorError, except a cat the node
    rejects as unknown, which is NotFoundError.  There are no retries here.
    """

    def __init__(
        self,
        api_url: str,
        *,
        gateway_url: str = "https://ipfs.io/ipfs/",
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._gateway_url = gateway_url
        self._client = client or httpx.AsyncClient(
            base_url=api_url.rstrip("/"), timeout=timeout
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    def gateway_url(self, content_id: str) -> str:
        return f"{self._gateway_url}{content_id}"

    async def _call(
        self, operation: str, path: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await self._client.post(path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            if operation == "get" and _is_missing(exc.response):
                EXTERNAL_CALLS.labels(COLLABORATOR, operation, "not_found").inc()
                raise NotFoundError(
                    f"Blob {kwargs['params']['arg']} not found"
                ) from exc
            EXTERNAL_CALLS.labels(COLLABORATOR, operation, "error").inc()
            raise ExternalCollaboratorError(
                COLLABORATOR, operation, f"HTTP {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            EXTERNAL_CALLS.labels(COLLABORATOR, operation, "error").inc()
            raise ExternalCollaboratorError(COLLABORATOR, operation, str(exc)) from exc
        EXTERNAL_CALLS.labels(COLLABORATOR, operation, "ok").inc()
        return response

    async def put(self, data: bytes, metadata: Mapping[str, Any] | None = None) -> str:
        name = str((metadata or {}).get("name", "certificate.json"))
        response = await self._call(
            "put",
            "/api/v0/add",
            params={"pin": "true", "cid-version": "1"},
            files={"file": (name, data, "application/octet-stream")},
        )
        try:
            content_id = response.json()["Hash"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            raise ExternalCollaboratorError(
                COLLABORATOR, "put", "malformed add response"
            ) from exc
        logger.info("Blob stored  cid=%s size=%d", content_id, len(data))
        return content_id

    async def get(self, content_id: str) -> bytes:
        response = await self._call("get", "/api/v0/cat", params={"arg": content_id})
        return response.content

    async def unpin(self, content_id: str) -> None:
        await self._call("unpin", "/api/v0/pin/rm", params={"arg": content_id})
        logger.info("Blob unpinned  cid=%s", content_id)

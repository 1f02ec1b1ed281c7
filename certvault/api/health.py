"""Health and readiness endpoints.

  /health  liveness plus per-dependency status.  Always 200; ``status``
           is "degraded" when an optional dependency is unreachable.
  /ready   readiness.  503 until the service graph has been built.
"""

from __future__ import annotations

from fastapi import APIRouter, Request, Response

from certvault.repos.certificate_repo import InMemoryCertificateRepo
from certvault.services.blob_store import InMemoryBlobStore
from certvault.services.ledger import InMemoryLedger

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(request: Request) -> dict:
    services = getattr(request.app.state, "services", None)
    if services is None:
        return {"status": "starting", "checks": {}}

    checks: dict[str, str] = {}
    overall = "ok"

    if services.redis is not None:
        try:
            await services.redis.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    checks["database"] = (
        "in_memory" if isinstance(services.repo, InMemoryCertificateRepo) else "configured"
    )
    checks["blob_store"] = (
        "in_memory" if isinstance(services.blob_store, InMemoryBlobStore) else "configured"
    )
    checks["ledger"] = (
        "in_memory" if isinstance(services.ledger, InMemoryLedger) else "configured"
    )

    return {"status": overall, "checks": checks}


@router.get("/ready")
async def ready(request: Request) -> Response:
    if getattr(request.app.state, "services", None) is None:
        return Response(status_code=503)
    return Response(status_code=200)

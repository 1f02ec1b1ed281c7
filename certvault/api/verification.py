"""Public verification endpoints (no authentication).

- GET  /v1/verify/code/{code}         by verification code, case-insensitive
- GET  /v1/verify/hash/{content_hash} by content hash
- POST /v1/verify/bulk                many codes, per-item outcomes
"""

from __future__ import annotations

from fastapi import APIRouter

from certvault.api.dependencies import ServicesDep
from certvault.api.schemas import BulkVerifyIn, outcome_to_dict

router = APIRouter(prefix="/v1/verify", tags=["verification"])


@router.get("/code/{code}")
async def verify_by_code(code: str, services: ServicesDep) -> dict:
    return await services.verification.by_code(code)


@router.get("/hash/{content_hash}")
async def verify_by_hash(content_hash: str, services: ServicesDep) -> dict:
    return await services.verification.by_hash(content_hash)


@router.post("/bulk")
async def verify_bulk(body: BulkVerifyIn, services: ServicesDep) -> dict:
    outcome = await services.verification.bulk(body.codes)
    return outcome_to_dict(outcome)

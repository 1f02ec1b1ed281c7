"""Certificate endpoints: creation, PENDING edits, workflow actions, anchoring.

- POST   /v1/certificates                      create one (PENDING)
- POST   /v1/certificates/batch                create many, per-item outcomes
- GET    /v1/certificates                      list (own, or all for reviewers)
- GET    /v1/certificates/{id}                 read
- PATCH  /v1/certificates/{id}                 edit while PENDING
- DELETE /v1/certificates/{id}                 delete while PENDING
- POST   /v1/certificates/{id}/verify          approve / reject
- POST   /v1/certificates/{id}/issue           issue, allocates verification code
- POST   /v1/certificates/{id}/revoke          revoke with reason
- GET    /v1/certificates/{id}/payload         decrypted stored payload
- POST   /v1/certificates/{id}/anchor          anchor content hash on the ledger
- GET    /v1/certificates/{id}/anchor          is the hash on the ledger?
- POST   /v1/certificates/anchor/batch         anchor many
"""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response, status

from certvault.api.dependencies import CurrentUser, ServicesDep, require_permission
from certvault.api.schemas import (
    AnchorBatchIn,
    CertificateBatchIn,
    CertificateIn,
    CertificateUpdateIn,
    IssueIn,
    RevokeIn,
    VerifyIn,
    outcome_to_dict,
)
from certvault.models.certificate import CertificateStatus
from certvault.models.principal import (
    CREATE_CERTIFICATES,
    ISSUE_CERTIFICATES,
    VERIFY_CERTIFICATES,
    Principal,
)

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_certificate(
    body: CertificateIn,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(CREATE_CERTIFICATES))],
) -> dict:
    record = await services.certificates.create(body.to_draft(), principal)
    return record.to_public_dict()


@router.post("/batch")
async def create_certificate_batch(
    body: CertificateBatchIn,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(CREATE_CERTIFICATES))],
) -> dict:
    batch_id, outcome = await services.certificates.batch_create(
        [c.to_draft() for c in body.certificates], principal
    )
    return {"batchId": batch_id, **outcome_to_dict(outcome)}


@router.get("")
async def list_certificates(
    services: ServicesDep,
    principal: CurrentUser,
    status_filter: Annotated[CertificateStatus | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> dict:
    records = await services.certificates.list(
        principal, status=status_filter, limit=limit, offset=offset
    )
    return {
        "certificates": [r.to_public_dict() for r in records],
        "count": len(records),
        "limit": limit,
        "offset": offset,
    }


@router.post("/anchor/batch")
async def anchor_certificate_batch(
    body: AnchorBatchIn,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(ISSUE_CERTIFICATES))],
) -> dict:
    outcome = await services.certificates.batch_anchor(body.certificate_ids, principal)
    return outcome_to_dict(outcome)


@router.get("/{certificate_id}")
async def get_certificate(
    certificate_id: str, services: ServicesDep, principal: CurrentUser
) -> dict:
    record = await services.certificates.get(certificate_id, principal)
    return record.to_public_dict()


@router.patch("/{certificate_id}")
async def update_certificate(
    certificate_id: str,
    body: CertificateUpdateIn,
    services: ServicesDep,
    principal: CurrentUser,
) -> dict:
    changes = body.model_dump(exclude_unset=True, by_alias=True)
    record = await services.certificates.update(certificate_id, principal, changes)
    return record.to_public_dict()


@router.delete("/{certificate_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_certificate(
    certificate_id: str, services: ServicesDep, principal: CurrentUser
) -> Response:
    await services.certificates.delete(certificate_id, principal)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{certificate_id}/verify")
async def verify_certificate(
    certificate_id: str,
    body: VerifyIn,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(VERIFY_CERTIFICATES))],
) -> dict:
    record = await services.lifecycle.verify(
        certificate_id, principal, approved=body.approved, comments=body.comments
    )
    return record.to_public_dict()


@router.post("/{certificate_id}/issue")
async def issue_certificate(
    certificate_id: str,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(ISSUE_CERTIFICATES))],
    body: IssueIn | None = None,
) -> dict:
    record = await services.lifecycle.issue(
        certificate_id, principal, comments=body.comments if body else ""
    )
    return record.to_public_dict()


@router.post("/{certificate_id}/revoke")
async def revoke_certificate(
    certificate_id: str,
    body: RevokeIn,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(ISSUE_CERTIFICATES))],
) -> dict:
    record = await services.lifecycle.revoke(
        certificate_id, principal, reason=body.reason
    )
    return record.to_public_dict()


@router.get("/{certificate_id}/payload")
async def get_certificate_payload(
    certificate_id: str, services: ServicesDep, principal: CurrentUser
) -> dict:
    return await services.certificates.get_payload(certificate_id, principal)


@router.post("/{certificate_id}/anchor")
async def anchor_certificate(
    certificate_id: str,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(ISSUE_CERTIFICATES))],
) -> dict:
    record = await services.certificates.anchor(certificate_id, principal)
    return record.to_public_dict()


@router.get("/{certificate_id}/anchor")
async def check_certificate_anchor(
    certificate_id: str, services: ServicesDep, principal: CurrentUser
) -> dict:
    record = await services.certificates.get(certificate_id, principal)
    anchored = await services.certificates.verify_anchored(certificate_id)
    return {
        "certificateId": record.certificate_id,
        "contentHash": record.content_hash,
        "anchored": anchored,
    }

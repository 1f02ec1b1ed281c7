"""Batch upload endpoints.

- POST /v1/uploads/csv       multipart CSV -> per-row validation report,
                             optionally creating certificates for valid rows
- POST /v1/uploads/rows      same, for rows already decoded by the client
                             (e.g. from a spreadsheet)
- GET  /v1/uploads/template  sample CSV with every recognised column
"""

from __future__ import annotations

import uuid
from typing import Annotated, Any

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from certvault.api.dependencies import ServicesDep, require_permission
from certvault.api.schemas import outcome_to_dict
from certvault.core.errors import ValidationError
from certvault.models.batch import BatchParseResult
from certvault.models.principal import CREATE_CERTIFICATES, Principal
from certvault.services.ingestion import IngestionPipeline, sample_csv
from certvault.services.registry import Services

router = APIRouter(prefix="/v1/uploads", tags=["uploads"])

MAX_UPLOAD_BYTES = 10 * 1024 * 1024
_CSV_CONTENT_TYPES = {
    "text/csv",
    "application/csv",
    "application/vnd.ms-excel",
    "text/plain",
    "application/octet-stream",
}


class RowsIn(BaseModel):
    rows: list[dict[str, Any]] = Field(min_length=1)


def _parse_report(parsed: BatchParseResult) -> dict[str, Any]:
    return {
        "uploadId": f"UPLOAD-{uuid.uuid4().hex[:16].upper()}",
        "totalRows": parsed.total_rows,
        "validRows": parsed.valid_rows,
        "invalidRows": parsed.invalid_rows,
        "canProceed": parsed.can_proceed,
        "results": [{"rowIndex": r.row_index, "data": r.data} for r in parsed.results],
        "errors": [
            {"rowIndex": e.row_index, "data": e.data, "error": e.error}
            for e in parsed.errors
        ],
        "recommendations": IngestionPipeline.recommendations(parsed),
    }


async def _report(
    parsed: BatchParseResult, services: Services, principal: Principal, create: bool
) -> dict[str, Any]:
    report = _parse_report(parsed)
    if create:
        batch_id, outcome = await services.certificates.create_from_upload(
            parsed, principal
        )
        report["batch"] = {"batchId": batch_id, **outcome_to_dict(outcome)}
    return report


@router.post("/csv")
async def upload_csv(
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(CREATE_CERTIFICATES))],
    file: Annotated[UploadFile, File()],
    create: Annotated[bool, Query()] = False,
) -> dict:
    filename = (file.filename or "").lower()
    if not filename.endswith(".csv") and file.content_type not in _CSV_CONTENT_TYPES:
        raise ValidationError("Only CSV files are accepted")
    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise ValidationError("File exceeds the 10 MB upload limit")
    if not content.strip():
        raise ValidationError("Uploaded file is empty")

    parsed = services.ingestion.parse_csv(content)
    return await _report(parsed, services, principal, create)


@router.post("/rows")
async def upload_rows(
    body: RowsIn,
    services: ServicesDep,
    principal: Annotated[Principal, Depends(require_permission(CREATE_CERTIFICATES))],
    create: Annotated[bool, Query()] = False,
) -> dict:
    if len(body.rows) > services.settings.batch_max_size * 10:
        raise ValidationError("Too many rows in one upload")
    parsed = services.ingestion.parse_rows(body.rows)
    return await _report(parsed, services, principal, create)


@router.get("/template", response_class=PlainTextResponse)
async def download_template() -> PlainTextResponse:
    return PlainTextResponse(
        sample_csv(),
        media_type="text/csv",
        headers={
            "Content-Disposition": 'attachment; filename="certificate_template.csv"'
        },
    )

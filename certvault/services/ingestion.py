"""Batch ingestion: tabular upload rows -> validated certificate candidates.

Each row goes through three steps and ends up in exactly one of two lists:

  normalize  map header synonyms onto the canonical field set, trim and
             collapse whitespace, coerce dates and numbers
  validate   check the canonical row against ``CertificateRow``
  fold       Ok -> ``results`` (with 1-based row index)
             Err -> ``errors`` (row index + every field error, joined)

No exception raised while handling one row can reach another row or the
caller.  Blank rows are dropped before they are counted.
"""

from __future__ import annotations

import csv
import datetime
import io
import logging
import re
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from certvault.core.errors import ValidationError
from certvault.core.metrics import INGESTION_ROWS
from certvault.models.batch import BatchParseResult, RowError, RowOutcome
from certvault.models.certificate import (
    EMAIL_PATTERN,
    WALLET_PATTERN,
    CertificateDraft,
    CertificateType,
    Course,
    Institution,
    Recipient,
)

logger = logging.getLogger(__name__)

# canonical field -> accepted header spellings (after normalize_header)
FIELD_SYNONYMS: dict[str, tuple[str, ...]] = {
    "studentId": (
        "studentid",
        "student_id",
        "student_number",
        "id",
        "roll_no",
        "roll_number",
    ),
    "name": ("name", "student_name", "full_name", "student"),
    "email": ("email", "email_address", "student_email"),
    "institution": ("institution", "school", "college", "university", "institute"),
    "department": ("department", "dept", "faculty", "school_department"),
    "subject": ("subject", "course", "course_name", "subject_name", "module"),
    "grade": ("grade", "marks", "score", "result", "cgpa", "gpa"),
    "credits": ("credits", "credit_hours", "units", "credit_points"),
    "completionDate": (
        "completiondate",
        "completion_date",
        "date_completed",
        "graduation_date",
        "date",
    ),
    "certificateType": ("certificatetype", "certificate_type", "type", "category"),
    "duration": ("duration", "course_duration", "period"),
    "walletAddress": (
        "walletaddress",
        "wallet_address",
        "wallet",
        "ethereum_address",
        "address",
    ),
}

REQUIRED_FIELDS = ("studentId", "name", "institution", "subject")

DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%d %B %Y",
    "%d %b %Y",
    "%B %d, %Y",
    "%b %d, %Y",
)

_WS = re.compile(r"\s+")
_EMAIL_RE = re.compile(EMAIL_PATTERN)


def normalize_header(header: str) -> str:
    return _WS.sub("_", header.strip().lower())


def clean_value(value: Any) -> str:
    if value is None:
        return ""
    return _WS.sub(" ", str(value)).strip()


def parse_date(value: str) -> datetime.date | None:
    """Try the accepted formats in order; None when nothing matches."""
    for fmt in DATE_FORMATS:
        try:
            return datetime.datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    try:
        return datetime.datetime.fromisoformat(value).date()
    except ValueError:
        return None


class CertificateRow(BaseModel):
    """Schema every canonical upload row must satisfy."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    student_id: str = Field(alias="studentId", min_length=1, max_length=50)
    name: str = Field(min_length=2, max_length=100)
    email: str | None = None
    institution: str = Field(min_length=2, max_length=200)
    department: str | None = Field(default=None, max_length=100)
    subject: str = Field(min_length=2, max_length=100)
    grade: str | None = Field(default=None, max_length=10)
    credits: float | None = Field(default=None, ge=0, le=999)
    completion_date: datetime.date | None = Field(default=None, alias="completionDate")
    certificate_type: CertificateType = Field(
        default=CertificateType.ACADEMIC, alias="certificateType"
    )
    duration: str | None = Field(default=None, max_length=50)
    wallet_address: str | None = Field(
        default=None, alias="walletAddress", pattern=WALLET_PATTERN
    )

    @field_validator(
        "email",
        "department",
        "grade",
        "credits",
        "completion_date",
        "duration",
        "wallet_address",
        mode="before",
    )
    @classmethod
    def _blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str) and not v:
            return None
        return v

    @field_validator("certificate_type", mode="before")
    @classmethod
    def _default_type(cls, v: Any) -> Any:
        if v is None or v == "":
            return CertificateType.ACADEMIC
        if isinstance(v, str):
            return v.lower()
        return v

    @field_validator("email")
    @classmethod
    def _check_email(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.lower()
        if not _EMAIL_RE.match(v):
            raise ValueError("must be a valid email address")
        return v


def _format_errors(exc: PydanticValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        field = ".".join(str(p) for p in err["loc"]) or "row"
        if err["type"] == "missing" or (
            err["type"] == "string_too_short" and err.get("input") == ""
        ):
            messages.append(f"{field} is required")
        else:
            messages.append(f"{field}: {err['msg']}")
    return messages


class IngestionPipeline:
    """Stateless; one instance serves every upload."""

    def normalize_row(self, raw: Mapping[Any, Any]) -> dict[str, Any]:
        by_header: dict[str, Any] = {}
        for key, value in raw.items():
            if key is None:
                continue  # csv puts surplus cells under a None key
            by_header.setdefault(normalize_header(str(key)), value)

        normalized: dict[str, Any] = {}
        for field, synonyms in FIELD_SYNONYMS.items():
            value = ""
            for header in synonyms:
                if header in by_header:
                    value = by_header[header]
                    break
            normalized[field] = clean_value(value)

        if normalized["completionDate"]:
            parsed = parse_date(normalized["completionDate"])
            if parsed is not None:
                normalized["completionDate"] = parsed

        if normalized["credits"]:
            try:
                normalized["credits"] = float(normalized["credits"])
            except ValueError:
                pass  # left as text; the schema reports it

        return normalized

    def validate_row(self, normalized: Mapping[str, Any]) -> dict[str, Any]:
        """Return the validated row, or raise ValidationError listing every field error."""
        try:
            row = CertificateRow.model_validate(dict(normalized))
        except PydanticValidationError as exc:
            messages = _format_errors(exc)
            raise ValidationError("; ".join(messages), errors=messages) from None
        return row.model_dump(by_alias=True)

    @staticmethod
    def is_empty_row(raw: Mapping[Any, Any]) -> bool:
        return all(clean_value(v) == "" for v in raw.values())

    def parse_rows(self, rows: Iterable[Mapping[Any, Any]]) -> BatchParseResult:
        results: list[RowOutcome] = []
        errors: list[RowError] = []

        for row_index, raw in enumerate(rows, start=1):
            if self.is_empty_row(raw):
                continue
            try:
                data = self.validate_row(self.normalize_row(raw))
            except ValidationError as exc:
                errors.append(
                    RowError(
                        row_index=row_index,
                        data={str(k): v for k, v in raw.items() if k is not None},
                        error=f"Row {row_index}: {exc}",
                    )
                )
                continue
            results.append(RowOutcome(row_index=row_index, data=data))

        INGESTION_ROWS.labels(result="valid").inc(len(results))
        INGESTION_ROWS.labels(result="invalid").inc(len(errors))
        logger.info(
            "Ingestion finished  valid=%d invalid=%d", len(results), len(errors)
        )
        return BatchParseResult(
            total_rows=len(results) + len(errors),
            valid_rows=len(results),
            invalid_rows=len(errors),
            results=tuple(results),
            errors=tuple(errors),
        )

    def validate_headers(self, headers: Iterable[str]) -> None:
        present = {normalize_header(h) for h in headers if h}
        missing = [
            field
            for field in REQUIRED_FIELDS
            if not present.intersection(FIELD_SYNONYMS[field])
        ]
        if missing:
            raise ValidationError(
                f"Missing required headers: {', '.join(missing)}",
                errors=[f"{field} column is required" for field in missing],
            )

    def parse_csv(self, content: bytes | str) -> BatchParseResult:
        """Decode CSV text and run every data row through ``parse_rows``.

        A missing or incomplete header row is a file-level ValidationError;
        everything below the header is handled per row.
        """
        if isinstance(content, bytes):
            try:
                content = content.decode("utf-8-sig")
            except UnicodeDecodeError:
                raise ValidationError("CSV file must be UTF-8 encoded") from None

        reader = csv.DictReader(io.StringIO(content))
        if not reader.fieldnames:
            raise ValidationError("CSV file has no header row")
        self.validate_headers(reader.fieldnames)
        try:
            return self.parse_rows(reader)
        except csv.Error as exc:
            raise ValidationError(f"CSV file is malformed: {exc}") from None

    @staticmethod
    def to_draft(data: Mapping[str, Any]) -> CertificateDraft:
        """Turn a validated row (``RowOutcome.data``) into a creation draft."""
        return CertificateDraft(
            title=f"Certificate - {data['subject']}",
            type=CertificateType(data.get("certificateType") or CertificateType.ACADEMIC),
            recipient=Recipient(
                student_id=data["studentId"],
                name=data["name"],
                email=data.get("email"),
                wallet_address=(data.get("walletAddress") or None)
                and data["walletAddress"].lower(),
            ),
            institution=Institution(
                name=data["institution"], department=data.get("department")
            ),
            course=Course(
                subject=data["subject"],
                grade=data.get("grade"),
                credits=data.get("credits"),
                completion_date=data.get("completionDate"),
                duration=data.get("duration"),
            ),
        )

    @staticmethod
    def recommendations(result: BatchParseResult) -> list[str]:
        tips = []
        if result.invalid_rows > 0:
            tips.append(
                "Fix validation errors before proceeding with certificate creation"
            )
        if result.valid_rows == 0:
            tips.append(
                "No valid data found. Please check your file format and required fields"
            )
        if any("email" in e.error for e in result.errors):
            tips.append("Ensure email addresses are in valid format")
        if any("completionDate" in e.error for e in result.errors):
            tips.append("Use YYYY-MM-DD format for dates")
        return tips


SAMPLE_HEADERS = (
    "studentId",
    "name",
    "email",
    "institution",
    "department",
    "subject",
    "grade",
    "credits",
    "completionDate",
    "certificateType",
    "duration",
    "walletAddress",
)

SAMPLE_ROWS = (
    (
        "STU001",
        "John Doe",
        "john.doe@email.com",
        "Tech University",
        "Computer Science",
        "Web Development",
        "A+",
        "3",
        "2024-12-01",
        "academic",
        "4 months",
        "0x742d35cc6634c0532925a3b8d34c0000d0619ce0",
    ),
    (
        "STU002",
        "Jane Smith",
        "jane.smith@email.com",
        "Tech University",
        "Computer Science",
        "Database Systems",
        "A",
        "4",
        "2024-11-15",
        "academic",
        "3 months",
        "",
    ),
)


def sample_csv() -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(SAMPLE_HEADERS)
    writer.writerows(SAMPLE_ROWS)
    return buf.getvalue()

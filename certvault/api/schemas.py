"""Request bodies for the certificate API.

Wire format is camelCase, matching the stored payload and the public
representation; Python attributes stay snake_case.
"""

from __future__ import annotations

import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from certvault.models.batch import BatchOutcome
from certvault.models.certificate import (
    EMAIL_PATTERN,
    WALLET_PATTERN,
    CertificateDraft,
    CertificateType,
    Course,
    Institution,
    Recipient,
)


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class RecipientIn(_CamelModel):
    student_id: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=2, max_length=100)
    email: str | None = Field(default=None, max_length=320, pattern=EMAIL_PATTERN)
    wallet_address: str | None = Field(default=None, pattern=WALLET_PATTERN)

    @field_validator("email", "wallet_address")
    @classmethod
    def _lower_contacts(cls, v: str | None) -> str | None:
        return v.lower() if v else v


class InstitutionIn(_CamelModel):
    name: str = Field(min_length=2, max_length=200)
    department: str | None = Field(default=None, max_length=100)


class CourseIn(_CamelModel):
    subject: str = Field(min_length=2, max_length=100)
    grade: str | None = Field(default=None, max_length=10)
    credits: float | None = Field(default=None, ge=0, le=999)
    completion_date: datetime.date | None = None
    duration: str | None = Field(default=None, max_length=50)


class CertificateIn(_CamelModel):
    title: str = Field(min_length=1, max_length=200)
    type: CertificateType = CertificateType.ACADEMIC
    description: str | None = Field(default=None, max_length=2000)
    certificate_id: str | None = Field(
        default=None, min_length=1, max_length=64, pattern=r"^[A-Za-z0-9_-]+$"
    )
    recipient: RecipientIn
    institution: InstitutionIn
    course: CourseIn
    tags: list[str] = Field(default_factory=list, max_length=20)

    def to_draft(self) -> CertificateDraft:
        return CertificateDraft(
            title=self.title,
            type=self.type,
            description=self.description,
            certificate_id=self.certificate_id,
            recipient=Recipient(
                student_id=self.recipient.student_id,
                name=self.recipient.name,
                email=self.recipient.email,
                wallet_address=self.recipient.wallet_address,
            ),
            institution=Institution(
                name=self.institution.name, department=self.institution.department
            ),
            course=Course(
                subject=self.course.subject,
                grade=self.course.grade,
                credits=self.course.credits,
                completion_date=self.course.completion_date,
                duration=self.course.duration,
            ),
            tags=tuple(self.tags),
        )


class CertificateBatchIn(_CamelModel):
    certificates: list[CertificateIn] = Field(min_length=1)


class CertificateUpdateIn(_CamelModel):
    """Editable fields only; identity fields are rejected."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = Field(default=None, min_length=1, max_length=200)
    description: str | None = Field(default=None, max_length=2000)
    type: CertificateType | None = None
    tags: list[str] | None = Field(default=None, max_length=20)
    email: str | None = Field(default=None, max_length=320, pattern=EMAIL_PATTERN)
    wallet_address: str | None = Field(default=None, pattern=WALLET_PATTERN)
    department: str | None = Field(default=None, max_length=100)
    credits: float | None = Field(default=None, ge=0, le=999)
    duration: str | None = Field(default=None, max_length=50)

    @field_validator("email", "wallet_address")
    @classmethod
    def _lower_contacts(cls, v: str | None) -> str | None:
        return v.lower() if v else v


class VerifyIn(BaseModel):
    approved: bool
    comments: str = Field(default="", max_length=1000)


class IssueIn(BaseModel):
    comments: str = Field(default="", max_length=1000)


class RevokeIn(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)


class AnchorBatchIn(_CamelModel):
    certificate_ids: list[str] = Field(min_length=1)


class BulkVerifyIn(BaseModel):
    codes: list[str] = Field(min_length=1)


def outcome_to_dict(outcome: BatchOutcome) -> dict[str, Any]:
    return {
        "total": outcome.total,
        "succeeded": outcome.succeeded,
        "failed": outcome.failed,
        "results": [
            {
                "index": item.index,
                "ok": item.ok,
                "identifier": item.identifier,
                "error": item.error,
                "detail": item.detail,
            }
            for item in outcome.items
        ],
    }

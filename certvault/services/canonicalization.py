"""Canonical byte encoding of a certificate's identity fields.

The content hash anchored on the ledger is computed over these bytes, so the
encoding must be identical for equal logical content across processes,
restarts, and implementations:

  - the field list and its order are fixed below, never taken from an object
  - strings are trimmed and internal whitespace runs collapse to one space
  - dates are ISO-8601 date-only (YYYY-MM-DD)
  - absent optional values encode as JSON null
  - compact JSON tokens, UTF-8, no ASCII escaping
"""

from __future__ import annotations

import datetime
import json
import re
from collections.abc import Callable
from typing import Any

from certvault.core.errors import ValidationError
from certvault.models.certificate import CertificateDraft, CertificateRecord

Identified = CertificateRecord | CertificateDraft

_WS = re.compile(r"\s+")

# (encoded key, accessor) in canonical order. Changing this list changes
# every content hash ever issued.
IDENTITY_FIELDS: tuple[tuple[str, Callable[[Identified], Any]], ...] = (
    ("certificateId", lambda r: r.certificate_id),
    ("studentId", lambda r: r.recipient.student_id),
    ("recipientName", lambda r: r.recipient.name),
    ("institution", lambda r: r.institution.name),
    ("subject", lambda r: r.course.subject),
    ("grade", lambda r: r.course.grade),
    ("completionDate", lambda r: r.course.completion_date),
)


def _normalize(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime.datetime):
        return value.date().isoformat()
    if isinstance(value, datetime.date):
        return value.isoformat()
    text = _WS.sub(" ", str(value)).strip()
    return text or None


def _encode(value: str | None) -> str:
    return json.dumps(value, ensure_ascii=False)


def canonicalize(record: Identified) -> bytes:
    """Deterministic bytes for the identity-bearing fields of ``record``.

    ``certificate_id`` must already be assigned: a draft without one has no
    identity yet.
    """
    if not record.certificate_id:
        raise ValidationError("certificate_id is required for canonicalization")

    parts = []
    for key, accessor in IDENTITY_FIELDS:
        parts.append(f"{_encode(key)}:{_encode(_normalize(accessor(record)))}")
    return ("{" + ",".join(parts) + "}").encode("utf-8")

"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in certvault/models/.
Nested value objects (recipient, institution, course, workflow stamps,
anchor, history) are stored as JSONB sub-documents; the repository
converts between rows and dataclasses.
"""

from __future__ import annotations

import datetime
from typing import Any

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import Mapped, mapped_column

from certvault.db.engine import Base


class CertificateRow(Base):
    __tablename__ = "certificates"

    certificate_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    content_hash: Mapped[str] = mapped_column(
        String(66), unique=True, index=True, nullable=False
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[str] = mapped_column(
        String(32), nullable=False
    )  # academic|professional|training|achievement
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, index=True, default="pending"
    )  # pending|approved|rejected|issued|revoked
    creator_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    external_content_id: Mapped[str] = mapped_column(String(128), nullable=False)
    encryption_key: Mapped[str] = mapped_column(Text, nullable=False)
    is_encrypted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    verification_code: Mapped[str | None] = mapped_column(
        String(32), unique=True, nullable=True
    )
    is_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    batch_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    tags: Mapped[list[str]] = mapped_column(ARRAY(String), nullable=False, default=[])
    recipient: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    institution: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    course: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False)
    verifier: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    issuer: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    anchor: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    history: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONB, nullable=False, default=[]
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

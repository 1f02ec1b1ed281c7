from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True, slots=True)
class RowOutcome:
    """A row that passed normalisation and schema validation."""

    row_index: int
    data: dict[str, Any]


@dataclass(frozen=True, slots=True)
class RowError:
    row_index: int
    data: dict[str, Any]
    error: str


@dataclass(frozen=True, slots=True)
class BatchParseResult:
    """Result of one ingestion call.  Transient, never persisted."""

    total_rows: int
    valid_rows: int
    invalid_rows: int
    results: tuple[RowOutcome, ...] = ()
    errors: tuple[RowError, ...] = ()

    @property
    def can_proceed(self) -> bool:
        return self.valid_rows > 0


@dataclass(frozen=True, slots=True)
class ItemOutcome:
    """Per-item result of a batch create / anchor / verify call."""

    index: int
    ok: bool
    identifier: str | None = None
    error: str | None = None
    detail: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    items: tuple[ItemOutcome, ...]

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

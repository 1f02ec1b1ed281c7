from __future__ import annotations

import datetime

import pytest

from certvault.core.errors import ValidationError
from certvault.models.certificate import CertificateType
from certvault.services.ingestion import IngestionPipeline, sample_csv


@pytest.fixture
def pipeline() -> IngestionPipeline:
    return IngestionPipeline()


def _row(n: int, **overrides: str) -> dict[str, str]:
    row = {
        "studentId": f"STU{n:03d}",
        "name": f"Student {n}",
        "email": f"student{n}@example.com",
        "institution": "Tech University",
        "subject": "Web Development",
        "grade": "A",
        "completionDate": "2024-12-01",
    }
    row.update(overrides)
    return row


# ---- batch partitioning ----


def test_two_bad_rows_out_of_ten(pipeline: IngestionPipeline) -> None:
    rows = [_row(n) for n in range(1, 11)]
    rows[2]["name"] = ""
    rows[6]["email"] = "not-an-email"

    result = pipeline.parse_rows(rows)

    assert result.total_rows == 10
    assert result.valid_rows == 8
    assert result.invalid_rows == 2
    assert result.can_proceed
    assert [r.row_index for r in result.results] == [1, 2, 4, 5, 6, 8, 9, 10]
    assert [e.row_index for e in result.errors] == [3, 7]
    assert result.errors[0].error == "Row 3: name is required"
    assert result.errors[1].error.startswith("Row 7: email:")
    assert result.errors[1].data["email"] == "not-an-email"


def test_every_field_error_is_reported(pipeline: IngestionPipeline) -> None:
    result = pipeline.parse_rows([_row(1, name="", institution="")])
    assert result.errors[0].error == "Row 1: name is required; institution is required"


def test_blank_rows_are_skipped_but_keep_positions(pipeline: IngestionPipeline) -> None:
    rows = [_row(1), {"studentId": " ", "name": "", "email": None}, _row(3)]
    result = pipeline.parse_rows(rows)
    assert result.total_rows == 2
    assert [r.row_index for r in result.results] == [1, 3]


def test_no_valid_rows_cannot_proceed(pipeline: IngestionPipeline) -> None:
    result = pipeline.parse_rows([_row(1, studentId="")])
    assert result.valid_rows == 0
    assert not result.can_proceed
    assert "No valid data found" in " ".join(pipeline.recommendations(result))


# ---- normalisation ----


def test_header_synonyms_are_mapped(pipeline: IngestionPipeline) -> None:
    raw = {
        " Student ID ": "STU001",
        "Full Name": "Ada   Lovelace",
        "University": "Tech University",
        "Course Name": "Mathematics",
        "Marks": "A+",
        "Credit Hours": "3",
        "Graduation Date": "2024-12-01",
        "Category": "Professional",
        "Wallet": "0x742D35CC6634C0532925A3B8D34C0000D0619CE0",
    }
    data = pipeline.validate_row(pipeline.normalize_row(raw))
    assert data["studentId"] == "STU001"
    assert data["name"] == "Ada Lovelace"
    assert data["institution"] == "Tech University"
    assert data["subject"] == "Mathematics"
    assert data["grade"] == "A+"
    assert data["credits"] == 3.0
    assert data["completionDate"] == datetime.date(2024, 12, 1)
    assert data["certificateType"] == CertificateType.PROFESSIONAL


@pytest.mark.parametrize(
    "raw_date",
    ["2024-06-01", "2024/06/01", "06/01/2024", "1 June 2024", "1 Jun 2024", "June 1, 2024"],
)
def test_accepted_date_formats(pipeline: IngestionPipeline, raw_date: str) -> None:
    data = pipeline.validate_row(pipeline.normalize_row(_row(1, completionDate=raw_date)))
    assert data["completionDate"] == datetime.date(2024, 6, 1)


def test_unparseable_date_is_a_row_error(pipeline: IngestionPipeline) -> None:
    result = pipeline.parse_rows([_row(1, completionDate="31/31/2024")])
    assert result.invalid_rows == 1
    assert "completionDate" in result.errors[0].error
    assert "Use YYYY-MM-DD format for dates" in pipeline.recommendations(result)


def test_non_numeric_credits_is_a_row_error(pipeline: IngestionPipeline) -> None:
    result = pipeline.parse_rows([_row(1, credits="three")])
    assert result.invalid_rows == 1
    assert "credits" in result.errors[0].error


def test_type_defaults_to_academic(pipeline: IngestionPipeline) -> None:
    data = pipeline.validate_row(pipeline.normalize_row(_row(1)))
    assert data["certificateType"] == CertificateType.ACADEMIC
    assert data["department"] is None


def test_unknown_type_is_rejected(pipeline: IngestionPipeline) -> None:
    with pytest.raises(ValidationError, match="certificateType"):
        pipeline.validate_row(pipeline.normalize_row(_row(1, certificateType="diploma")))


def test_bad_wallet_is_rejected(pipeline: IngestionPipeline) -> None:
    with pytest.raises(ValidationError, match="walletAddress"):
        pipeline.validate_row(pipeline.normalize_row(_row(1, walletAddress="0x123")))


# ---- CSV ----


def test_parse_csv_with_bom_and_synonym_headers(pipeline: IngestionPipeline) -> None:
    content = (
        "\ufeffStudent ID,Student Name,School,Subject,Date\n"
        "STU001,Ada Lovelace,Tech University,Mathematics,06/01/2024\n"
        ",,,,\n"
        "STU002,B,Tech University,Mathematics,2024-06-01\n"
    ).encode()
    result = pipeline.parse_csv(content)
    assert result.valid_rows == 1
    assert result.invalid_rows == 1
    assert result.results[0].data["completionDate"] == datetime.date(2024, 6, 1)
    assert result.errors[0].row_index == 3


def test_parse_csv_requires_header_columns(pipeline: IngestionPipeline) -> None:
    with pytest.raises(ValidationError, match="Missing required headers: institution"):
        pipeline.parse_csv("studentId,name,subject\nSTU001,Ada,Math\n")


def test_parse_csv_rejects_empty_file(pipeline: IngestionPipeline) -> None:
    with pytest.raises(ValidationError, match="no header row"):
        pipeline.parse_csv("")


def test_parse_csv_rejects_non_utf8(pipeline: IngestionPipeline) -> None:
    with pytest.raises(ValidationError, match="UTF-8"):
        pipeline.parse_csv("studentId,name\n".encode("utf-16"))


def test_sample_template_parses_cleanly(pipeline: IngestionPipeline) -> None:
    result = pipeline.parse_csv(sample_csv())
    assert result.valid_rows == 2
    assert result.invalid_rows == 0


# ---- drafts ----


def test_to_draft(pipeline: IngestionPipeline) -> None:
    data = pipeline.validate_row(
        pipeline.normalize_row(
            _row(1, walletAddress="0x742D35CC6634C0532925A3B8D34C0000D0619CE0")
        )
    )
    draft = IngestionPipeline.to_draft(data)
    assert draft.title == "Certificate - Web Development"
    assert draft.certificate_id is None
    assert draft.recipient.student_id == "STU001"
    assert draft.recipient.wallet_address == "0x742d35cc6634c0532925a3b8d34c0000d0619ce0"
    assert draft.course.completion_date == datetime.date(2024, 12, 1)
    assert draft.type == CertificateType.ACADEMIC

from datetime import date

import pytest

from master_import.bulk.columns import TemplateColumn, coerce, normalize_header, to_bool, to_date, to_number
from master_import.bulk.errors import ImportSystemError
from master_import.bulk.services.departments import DepartmentsImportService
from master_import.bulk.services.drug_generics import DrugGenericsImportService
from master_import.bulk.services.drugs import DrugsImportService
from master_import.bulk.validation import check_columns, validate_rows
from master_import.db import models


def _department(code="ICU", name="Intensive Care", hospital_code="", description="", is_active="true"):
    return {
        "code": code,
        "name": name,
        "hospital_code": hospital_code,
        "description": description,
        "is_active": is_active,
    }


def _codes(issues, row=None):
    return [issue.code for issue in issues if row is None or issue.row == row]


def test_missing_required_field_gives_exactly_one_error(db_session):
    service = DepartmentsImportService()
    row = _department(code="", name="x" * 300, description="y" * 600)
    result = validate_rows(db_session, service, [row], chunk_size=1000)

    required = [issue for issue in result.errors if issue.code == "REQUIRED_FIELD"]
    assert len(required) == 1
    assert required[0].field == "code"
    assert required[0].row == 1
    assert result.error_rows == 1
    assert result.valid_rows == 0


def test_pattern_and_length_are_invalid_format(db_session):
    service = DepartmentsImportService()
    rows = [
        _department(code="icu lower"),
        _department(code="A" * 51),
    ]
    result = validate_rows(db_session, service, rows, chunk_size=1000)

    assert _codes(result.errors, row=1) == ["INVALID_FORMAT"]
    assert "INVALID_FORMAT" in _codes(result.errors, row=2)
    assert all(issue.field == "code" for issue in result.errors)


def test_type_mismatch_is_invalid_type(db_session):
    service = DrugGenericsImportService()
    row = {
        "working_code": "1000001",
        "generic_name": "Paracetamol",
        "dosage_form": "TAB",
        "strength": "five hundred",
        "strength_unit": "mg",
        "is_active": "maybe",
    }
    result = validate_rows(db_session, service, [row], chunk_size=1000)

    by_field = {issue.field: issue.code for issue in result.errors}
    assert by_field == {"strength": "INVALID_TYPE", "is_active": "INVALID_TYPE"}


def test_allowed_values_checked(db_session):
    service = DrugGenericsImportService()
    row = {"working_code": "1000001", "generic_name": "Paracetamol", "dosage_form": "PILL"}
    result = validate_rows(db_session, service, [row], chunk_size=1000)
    assert [(issue.field, issue.code) for issue in result.errors] == [("dosage_form", "INVALID_FORMAT")]


def test_generic_and_domain_errors_are_merged(db_session):
    db_session.add(models.Department(dept_code="ICU", dept_name="Existing"))
    db_session.commit()
    service = DepartmentsImportService()
    row = _department(code="ICU", name="", hospital_code="H999")
    result = validate_rows(db_session, service, [row], chunk_size=1000)

    assert sorted(_codes(result.errors)) == ["DUPLICATE_CODE", "INVALID_REFERENCE", "REQUIRED_FIELD"]


def test_duplicate_in_file_reported_on_later_rows(db_session):
    service = DepartmentsImportService()
    rows = [_department(code="ER"), _department(code="OPD"), _department(code="ER")]
    result = validate_rows(db_session, service, rows, chunk_size=2)

    assert result.total_rows == 3
    assert result.error_rows == 1
    assert result.errors[0].row == 3
    assert result.errors[0].code == "DUPLICATE_IN_FILE"
    assert "row 1" in result.errors[0].message


def test_warning_does_not_count_as_error_row(db_session):
    service = DepartmentsImportService()
    result = validate_rows(db_session, service, [_department(is_active="")], chunk_size=1000)

    assert result.is_valid
    assert result.valid_rows == 1
    assert [(w.field, w.code, w.severity) for w in result.warnings] == [("is_active", "DEFAULT_APPLIED", "WARNING")]


def test_generic_strength_must_be_positive(db_session):
    service = DrugGenericsImportService()
    row = {"working_code": "1000001", "generic_name": "Paracetamol", "strength": "0", "strength_unit": "mg"}
    result = validate_rows(db_session, service, [row], chunk_size=1000)
    assert [(issue.field, issue.code) for issue in result.errors] == [("strength", "INVALID_VALUE")]


def test_drug_references(db_session):
    db_session.add(models.DrugGeneric(working_code="2000001", generic_name="Old", is_active=False))
    db_session.commit()
    service = DrugsImportService()
    rows = [
        {"code": "D1", "trade_name": "A", "generic_code": "2000001", "unit_price": "1.5"},
        {"code": "D2", "trade_name": "B", "generic_code": "9999999", "department_code": "NOPE"},
        {"code": "D3", "trade_name": "C", "generic_code": "2000001", "unit_price": "-1"},
    ]
    result = validate_rows(db_session, service, rows, chunk_size=1000)

    assert _codes(result.warnings, row=1) == ["INACTIVE_REFERENCE"]
    assert sorted(_codes(result.errors, row=2)) == ["INVALID_REFERENCE", "INVALID_REFERENCE"]
    assert _codes(result.errors, row=3) == ["INVALID_VALUE"]
    assert result.valid_rows == 1


def test_check_columns_coerces_values():
    columns = DrugsImportService().get_template_columns()
    raw = {
        "code": "D1",
        "trade_name": "Tylenol",
        "generic_code": "1000001",
        "package_size": "1,000",
        "unit_price": "2.75",
        "registered_at": "2024-01-15",
    }
    values, issues = check_columns(columns, raw, 4)

    assert issues == []
    assert values["package_size"] == 1000
    assert values["unit_price"] == 2.75
    assert values["registered_at"] == date(2024, 1, 15)
    assert values["manufacturer"] is None


def test_coercion_helpers():
    assert to_number("12") == 12
    assert to_number("12.50") == 12.5
    assert to_number("-1,234.5") == -1234.5
    for value in ("1,5", "1,2,3", "12,34", ",100"):
        with pytest.raises(ValueError):
            to_number(value)
    assert to_date("2024-01-15") == date(2024, 1, 15)
    assert to_date("15 March 2024") == date(2024, 3, 15)
    for value in ("5", "March 2024", "2024"):
        with pytest.raises(ValueError):
            to_date(value)
    assert to_bool("Yes") is True
    assert to_bool("0") is False
    with pytest.raises(ValueError):
        to_bool("perhaps")
    assert coerce(TemplateColumn("c", "C"), "  text ") == "text"
    assert normalize_header("Código do Depto") == "codigo_do_depto"


def test_template_column_rejects_unknown_type():
    with pytest.raises(ValueError):
        TemplateColumn("c", "C", type="money")


def test_ambiguous_numbers_and_partial_dates_are_invalid_type():
    columns = DrugsImportService().get_template_columns()
    raw = {
        "code": "D1",
        "trade_name": "Tylenol",
        "generic_code": "1000001",
        "package_size": "1,2,3",
        "unit_price": "1,5",
        "registered_at": "5",
    }
    values, issues = check_columns(columns, raw, 2)

    by_field = {issue.field: issue.code for issue in issues}
    assert by_field == {"package_size": "INVALID_TYPE", "unit_price": "INVALID_TYPE", "registered_at": "INVALID_TYPE"}
    assert values["unit_price"] is None


def test_validate_rows_needs_positive_chunk_size(db_session):
    with pytest.raises(ImportSystemError) as excinfo:
        validate_rows(db_session, DepartmentsImportService(), [_department()], chunk_size=0)
    assert excinfo.value.code == "INVALID_OPTION"

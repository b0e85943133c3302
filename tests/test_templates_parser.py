from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

from master_import.bulk.errors import RowLimitExceededError, UnsupportedFormatError
from master_import.bulk.parser import parse_upload, to_records
from master_import.bulk.services.departments import DepartmentsImportService
from master_import.bulk.services.drugs import DrugsImportService
from master_import.bulk.templates import build_template


def test_xlsx_template_round_trip():
    service = DepartmentsImportService()
    content, filename = build_template(service, "xlsx")
    assert filename == "template_departments_1.0.0.xlsx"

    wb = load_workbook(BytesIO(content))
    assert wb.sheetnames == ["TEMPLATE", "COLUMNS", "INFO"]
    ws = wb["TEMPLATE"]
    assert [cell.value for cell in ws[1]] == [col.display_name for col in service.get_template_columns()]
    assert ws["A2"].value.startswith("Required | string | max 50")
    assert wb["INFO"]["B1"].value == "departments"

    ws.append(["ICU-01", "Intensive Care", "H001", "", "true"])
    ws.append(["ER", "Emergency", "", "", "false"])
    out = BytesIO()
    wb.save(out)

    parsed = parse_upload(out.getvalue(), "filled.xlsx", max_rows=10)
    records = to_records(parsed, service.get_template_columns())
    assert [record["code"] for record in records] == ["ICU-01", "ER"]
    assert records[1]["is_active"] == "false"


def test_csv_template_has_no_data_rows():
    service = DrugsImportService()
    content, filename = build_template(service, "csv")
    assert filename.endswith(".csv")

    parsed = parse_upload(content, filename, max_rows=10)
    assert parsed.rows == []
    assert parsed.headers[0] == "Drug Code"


def test_unknown_template_format():
    with pytest.raises(UnsupportedFormatError):
        build_template(DepartmentsImportService(), "pdf")


def test_data_row_resembling_instructions_is_kept():
    content = "Department Code,Department Name\nREQ-1,Required staff room\n".encode("utf-8")
    parsed = parse_upload(content, "departments.csv", max_rows=10)
    assert parsed.rows == [["REQ-1", "Required staff room"]]


def test_xlsx_numeric_cells_become_text():
    wb = Workbook()
    ws = wb.active
    ws.append(["Drug Code", "Trade Name", "Generic Working Code", "Unit Price", "Package Size"])
    ws.append(["D1", "Tylenol", 1000001, 1.5, 100.0])
    out = BytesIO()
    wb.save(out)

    parsed = parse_upload(out.getvalue(), "drugs.xlsx", max_rows=10)
    assert parsed.rows == [["D1", "Tylenol", "1000001", "1.5", "100"]]


def test_csv_latin1_fallback_and_blank_rows():
    content = "Department Code,Department Name\nCLIN,Clínica\n,\n\nOPD,Outpatient\n".encode("latin-1")
    parsed = parse_upload(content, "departments.csv", max_rows=2)
    assert [row[1] for row in parsed.rows] == ["Clínica", "Outpatient"]


def test_row_limit_counts_data_rows_only():
    content = "Department Code,Department Name\nA,a\nB,b\nC,c\n".encode("utf-8")
    with pytest.raises(RowLimitExceededError) as excinfo:
        parse_upload(content, "departments.csv", max_rows=2)
    assert excinfo.value.code == "ROW_LIMIT_EXCEEDED"


def test_empty_file_rejected():
    with pytest.raises(UnsupportedFormatError):
        parse_upload(b"", "departments.csv", max_rows=10)

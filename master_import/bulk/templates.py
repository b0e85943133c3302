import csv
from collections import defaultdict
from datetime import datetime
from io import BytesIO, StringIO
from typing import Dict, List, Tuple

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from master_import.bulk.errors import UnsupportedFormatError
from master_import.bulk.service import BaseImportService
from master_import.bulk.types import ValidationResult

TEMPLATE_FORMATS = ("xlsx", "csv")


def build_template(service: BaseImportService, fmt: str = "xlsx") -> Tuple[bytes, str]:
    fmt = (fmt or "xlsx").lower()
    if fmt not in TEMPLATE_FORMATS:
        raise UnsupportedFormatError(f"Template format '{fmt}' is not supported", details={"format": fmt})
    meta = service.get_metadata()
    columns = service.get_template_columns()
    headers = [col.display_name for col in columns]
    instructions = [col.instruction() for col in columns]
    filename = f"template_{meta.module}_{meta.version}.{fmt}"

    if fmt == "csv":
        out = StringIO()
        writer = csv.writer(out)
        writer.writerow(headers)
        writer.writerow(instructions)
        return out.getvalue().encode("utf-8-sig"), filename

    wb = Workbook()
    ws = wb.active
    ws.title = "TEMPLATE"
    ws.append(headers)
    ws.append(instructions)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "A3"
    for idx, _ in enumerate(headers, start=1):
        ws.column_dimensions[get_column_letter(idx)].width = 26

    dictionary = wb.create_sheet("COLUMNS")
    dictionary.append(["Column", "Key", "Required", "Type", "Max length", "Allowed values", "Description", "Example"])
    for col in columns:
        dictionary.append(
            [
                col.display_name,
                col.name,
                "yes" if col.required else "no",
                col.type,
                col.max_length,
                ", ".join(col.allowed_values or ()),
                col.description,
                col.example,
            ]
        )

    info = wb.create_sheet("INFO")
    info["A1"] = "Module"
    info["B1"] = meta.module
    info["A2"] = "Version"
    info["B2"] = meta.version
    info["A3"] = "Generated at"
    info["B3"] = datetime.utcnow().isoformat()
    info["A4"] = "Depends on"
    info["B4"] = ", ".join(meta.dependencies)

    out = BytesIO()
    wb.save(out)
    return out.getvalue(), filename


def build_error_report(
    service: BaseImportService,
    records: List[Dict[str, str]],
    validation: ValidationResult,
) -> Tuple[bytes, str]:
    """Workbook with every row that has an ERROR, plus the reasons."""
    columns = service.get_template_columns()
    error_map = defaultdict(list)
    for issue in validation.errors:
        error_map[issue.row].append(issue)

    wb = Workbook()
    ws = wb.active
    ws.title = "ERRORS"
    ws.append(["Row"] + [col.display_name for col in columns] + ["__status", "__error_fields", "__messages"])

    for row_number, record in enumerate(records, start=1):
        row_errors = error_map.get(row_number)
        if not row_errors:
            continue
        fields = ";".join(sorted({issue.field for issue in row_errors if issue.field}))
        messages = ";".join(issue.message for issue in row_errors)
        ws.append([row_number] + [record.get(col.name, "") for col in columns] + ["ERROR", fields, messages])

    out = BytesIO()
    wb.save(out)
    filename = f"errors_{validation.module_name}_{validation.session_id}.xlsx"
    return out.getvalue(), filename

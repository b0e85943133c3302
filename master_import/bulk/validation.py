import logging
import re
from typing import Dict, List, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from master_import.bulk.columns import TemplateColumn, coerce, is_blank
from master_import.bulk.errors import ImportSystemError
from master_import.bulk.service import BaseImportService, Row
from master_import.bulk.types import ValidationIssue, ValidationResult, error

logger = logging.getLogger("master_import.bulk")

TYPE_LABELS = {
    "number": "a number",
    "boolean": "true/false",
    "date": "a date",
}


def check_columns(columns: List[TemplateColumn], raw: Dict[str, str], row_number: int) -> Tuple[Row, List[ValidationIssue]]:
    """Run the checks shared by every module and coerce values to their column type.

    Fields that fail a check are handed to domain rules as ``None``.
    """
    values: Row = {}
    issues: List[ValidationIssue] = []
    for col in columns:
        value = raw.get(col.name)
        if is_blank(value):
            values[col.name] = None
            if col.required:
                issues.append(error(row_number, col.name, f"{col.display_name} is required", "REQUIRED_FIELD"))
            continue

        text = str(value).strip()
        failed = False
        if col.max_length and len(text) > col.max_length:
            issues.append(
                error(
                    row_number,
                    col.name,
                    f"{col.display_name} must be at most {col.max_length} characters",
                    "INVALID_FORMAT",
                )
            )
            failed = True
        if col.pattern and not re.fullmatch(col.pattern, text):
            issues.append(
                error(row_number, col.name, f"{col.display_name} has an invalid format", "INVALID_FORMAT")
            )
            failed = True
        if col.allowed_values and text not in col.allowed_values:
            issues.append(
                error(
                    row_number,
                    col.name,
                    f"{col.display_name} must be one of: {', '.join(col.allowed_values)}",
                    "INVALID_FORMAT",
                )
            )
            failed = True

        try:
            coerced = coerce(col, text)
        except (ValueError, OverflowError):
            issues.append(
                error(
                    row_number,
                    col.name,
                    f"{col.display_name} must be {TYPE_LABELS.get(col.type, col.type)}",
                    "INVALID_TYPE",
                )
            )
            failed = True
            coerced = None
        values[col.name] = None if failed else coerced
    return values, issues


def normalize_row(columns: List[TemplateColumn], raw: Dict[str, str]) -> Row:
    values, _ = check_columns(columns, raw, 0)
    return values


def validate_record(db: Session, service: BaseImportService, raw: Dict[str, str], row_number: int) -> Tuple[Row, List[ValidationIssue]]:
    columns = service.get_template_columns()
    values, issues = check_columns(columns, raw, row_number)
    try:
        issues.extend(service.validate_row(db, values, row_number))
    except SQLAlchemyError as exc:
        raise ImportSystemError(
            f"Validation query failed on row {row_number}",
            code="DATABASE_ERROR",
            row_number=row_number,
        ) from exc
    return values, issues


def validate_rows(
    db: Session,
    service: BaseImportService,
    records: List[Dict[str, str]],
    chunk_size: int,
    session_id: str = "",
) -> ValidationResult:
    if chunk_size < 1:
        raise ImportSystemError("chunk_size must be positive", code="INVALID_OPTION", details={"chunk_size": chunk_size})
    metadata = service.get_metadata()
    result = ValidationResult(session_id=session_id, module_name=metadata.module, total_rows=len(records))
    unique_columns = service.unique_columns()
    seen: Dict[str, Dict[str, int]] = {name: {} for name in unique_columns}
    error_rows = set()

    for start in range(0, len(records), chunk_size):
        chunk = records[start:start + chunk_size]
        for offset, raw in enumerate(chunk):
            row_number = start + offset + 1
            values, issues = validate_record(db, service, raw, row_number)

            for name in unique_columns:
                key = values.get(name)
                if key is None:
                    continue
                key = str(key).strip().upper()
                first = seen[name].get(key)
                if first is None:
                    seen[name][key] = row_number
                else:
                    issues.append(
                        error(
                            row_number,
                            name,
                            f"Value '{values.get(name)}' duplicates row {first} in this file",
                            "DUPLICATE_IN_FILE",
                        )
                    )

            for issue in issues:
                if issue.is_error:
                    result.errors.append(issue)
                    error_rows.add(row_number)
                else:
                    result.warnings.append(issue)
        logger.debug(
            "validation chunk module=%s rows=%s-%s",
            metadata.module,
            start + 1,
            start + len(chunk),
        )

    result.error_rows = len(error_rows)
    result.valid_rows = result.total_rows - result.error_rows
    return result

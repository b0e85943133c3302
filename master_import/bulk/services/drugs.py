"""Trade drugs.

Each drug points at a generic by working code and optionally at the
department that stocks it. Both parents must be imported first.
"""

from datetime import datetime
from typing import List

from master_import.bulk.columns import TemplateColumn
from master_import.bulk.errors import BatchInsertError
from master_import.bulk.service import TableImportService
from master_import.bulk.types import ImportServiceMetadata, ValidationIssue, error, warning
from master_import.db import models

METADATA = ImportServiceMetadata(
    module="drugs",
    domain="inventory",
    subdomain="master-data",
    display_name="Drugs",
    description="Trade drugs linked to their generic",
    dependencies=("drug_generics", "departments"),
    priority=3,
    tags=("master-data", "inventory"),
    supports_rollback=True,
    version="1.0.0",
)

COLUMNS = [
    TemplateColumn(
        "code",
        "Drug Code",
        required=True,
        max_length=50,
        pattern=r"^[A-Z0-9_-]+$",
        description="Unique drug code",
        example="PARA500-T",
    ),
    TemplateColumn("trade_name", "Trade Name", required=True, max_length=255, example="Tylenol 500"),
    TemplateColumn(
        "generic_code",
        "Generic Working Code",
        required=True,
        max_length=20,
        description="Working code of an existing drug generic",
        example="1000001",
    ),
    TemplateColumn(
        "department_code",
        "Department Code",
        max_length=50,
        description="Stocking department (must exist)",
        example="PHARM",
    ),
    TemplateColumn("manufacturer", "Manufacturer", max_length=255, example="Acme Pharma"),
    TemplateColumn("package_size", "Package Size", type="number", example="100"),
    TemplateColumn("unit_price", "Unit Price", type="number", example="1.50"),
    TemplateColumn("registered_at", "Registration Date", type="date", example="2024-01-15"),
]


class DrugsImportService(TableImportService):
    model = models.Drug

    def get_metadata(self) -> ImportServiceMetadata:
        return METADATA

    def get_template_columns(self) -> List[TemplateColumn]:
        return list(COLUMNS)

    def unique_columns(self) -> List[str]:
        return ["code"]

    def validate_row(self, db, row, row_number: int) -> List[ValidationIssue]:
        issues = []
        code = row.get("code")
        if code:
            existing = db.query(models.Drug.id).filter(models.Drug.drug_code == code).first()
            if existing:
                issues.append(
                    error(row_number, "code", f"Drug code '{code}' already exists in database", "DUPLICATE_CODE")
                )

        generic_code = row.get("generic_code")
        if generic_code:
            generic = (
                db.query(models.DrugGeneric)
                .filter(models.DrugGeneric.working_code == str(generic_code))
                .first()
            )
            if not generic:
                issues.append(
                    error(
                        row_number,
                        "generic_code",
                        f"Drug generic '{generic_code}' does not exist",
                        "INVALID_REFERENCE",
                    )
                )
            elif not generic.is_active:
                issues.append(
                    warning(
                        row_number,
                        "generic_code",
                        f"Drug generic '{generic_code}' is inactive",
                        "INACTIVE_REFERENCE",
                    )
                )

        department_code = row.get("department_code")
        if department_code:
            department = (
                db.query(models.Department.id)
                .filter(models.Department.dept_code == department_code)
                .first()
            )
            if not department:
                issues.append(
                    error(
                        row_number,
                        "department_code",
                        f"Department '{department_code}' does not exist",
                        "INVALID_REFERENCE",
                    )
                )

        package_size = row.get("package_size")
        if package_size is not None and (not isinstance(package_size, int) or package_size <= 0):
            issues.append(
                error(row_number, "package_size", "Package Size must be a positive whole number", "INVALID_VALUE")
            )
        unit_price = row.get("unit_price")
        if unit_price is not None and unit_price < 0:
            issues.append(error(row_number, "unit_price", "Unit Price cannot be negative", "INVALID_VALUE"))
        return issues

    def build_entity(self, db, row, batch_id: str):
        generic = (
            db.query(models.DrugGeneric)
            .filter(models.DrugGeneric.working_code == str(row["generic_code"]))
            .first()
        )
        if not generic:
            raise BatchInsertError(f"Drug generic '{row['generic_code']}' does not exist", code="INVALID_REFERENCE")
        department_id = None
        if row.get("department_code"):
            department = (
                db.query(models.Department)
                .filter(models.Department.dept_code == row["department_code"])
                .first()
            )
            if not department:
                raise BatchInsertError(
                    f"Department '{row['department_code']}' does not exist", code="INVALID_REFERENCE"
                )
            department_id = department.id
        registered = row.get("registered_at")
        return models.Drug(
            drug_code=row["code"],
            trade_name=row["trade_name"],
            generic_id=generic.id,
            department_id=department_id,
            manufacturer=row.get("manufacturer"),
            package_size=row.get("package_size"),
            unit_price=float(row["unit_price"]) if row.get("unit_price") is not None else None,
            registered_at=datetime.combine(registered, datetime.min.time()) if registered else None,
            import_batch_id=batch_id,
        )

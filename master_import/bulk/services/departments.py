"""Hospital departments (wards, clinics, pharmacy units).

Departments may point at a hospital by its code; the hospital must already
exist, so this module is imported after ``hospitals``.
"""

from typing import List

from master_import.bulk.columns import TemplateColumn
from master_import.bulk.errors import BatchInsertError
from master_import.bulk.service import TableImportService
from master_import.bulk.types import ImportServiceMetadata, ValidationIssue, error, warning
from master_import.db import models

METADATA = ImportServiceMetadata(
    module="departments",
    domain="inventory",
    subdomain="master-data",
    display_name="Departments",
    description="Master list of hospital departments",
    dependencies=("hospitals",),
    priority=1,
    tags=("master-data", "required", "inventory"),
    supports_rollback=True,
    version="1.0.0",
)

COLUMNS = [
    TemplateColumn(
        "code",
        "Department Code",
        required=True,
        max_length=50,
        pattern=r"^[A-Z0-9_-]+$",
        description="Unique code for the department (e.g., ICU, ED, OPD)",
        example="ICU-01",
    ),
    TemplateColumn(
        "name",
        "Department Name",
        required=True,
        max_length=255,
        description="Full name of the department",
        example="Intensive Care Unit",
    ),
    TemplateColumn(
        "hospital_code",
        "Hospital Code",
        max_length=50,
        description="Hospital the department belongs to (must exist)",
        example="H001",
    ),
    TemplateColumn(
        "description",
        "Description",
        max_length=500,
        description="Additional notes about the department",
        example="High-dependency unit for critical patients",
    ),
    TemplateColumn(
        "is_active",
        "Is Active",
        type="boolean",
        description="Whether this department is currently active",
        example="true",
    ),
]


class DepartmentsImportService(TableImportService):
    model = models.Department

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
            existing = db.query(models.Department.id).filter(models.Department.dept_code == code).first()
            if existing:
                issues.append(
                    error(
                        row_number,
                        "code",
                        f"Department code '{code}' already exists in database",
                        "DUPLICATE_CODE",
                    )
                )

        hospital_code = row.get("hospital_code")
        if hospital_code:
            hospital = db.query(models.Hospital.id).filter(models.Hospital.code == hospital_code).first()
            if not hospital:
                issues.append(
                    error(
                        row_number,
                        "hospital_code",
                        f"Hospital '{hospital_code}' does not exist",
                        "INVALID_REFERENCE",
                    )
                )

        if row.get("is_active") is None:
            issues.append(
                warning(row_number, "is_active", "Is Active not provided, department will be active", "DEFAULT_APPLIED")
            )
        return issues

    def build_entity(self, db, row, batch_id: str):
        hospital_id = None
        if row.get("hospital_code"):
            hospital = db.query(models.Hospital).filter(models.Hospital.code == row["hospital_code"]).first()
            if not hospital:
                raise BatchInsertError(f"Hospital '{row['hospital_code']}' does not exist", code="INVALID_REFERENCE")
            hospital_id = hospital.id
        return models.Department(
            dept_code=row["code"],
            dept_name=row["name"],
            hospital_id=hospital_id,
            description=row.get("description"),
            is_active=row.get("is_active") if row.get("is_active") is not None else True,
            import_batch_id=batch_id,
        )

from typing import List

from master_import.bulk.columns import TemplateColumn
from master_import.bulk.service import TableImportService
from master_import.bulk.types import ImportServiceMetadata, ValidationIssue, error
from master_import.db import models

METADATA = ImportServiceMetadata(
    module="hospitals",
    domain="core",
    subdomain="master-data",
    display_name="Hospitals",
    description="Hospitals and health facilities served by the platform",
    dependencies=(),
    priority=0,
    tags=("master-data", "required", "core"),
    supports_rollback=False,
    version="1.0.0",
)

COLUMNS = [
    TemplateColumn(
        "code",
        "Hospital Code",
        required=True,
        max_length=50,
        pattern=r"^[A-Z0-9_-]+$",
        description="Unique hospital code",
        example="H001",
    ),
    TemplateColumn("name", "Hospital Name", required=True, max_length=255, example="General Hospital"),
    TemplateColumn("province", "Province", max_length=100, example="Bangkok"),
    TemplateColumn("is_active", "Is Active", type="boolean", example="true"),
]


class HospitalsImportService(TableImportService):
    model = models.Hospital

    def get_metadata(self) -> ImportServiceMetadata:
        return METADATA

    def get_template_columns(self) -> List[TemplateColumn]:
        return list(COLUMNS)

    def unique_columns(self) -> List[str]:
        return ["code"]

    def validate_row(self, db, row, row_number: int) -> List[ValidationIssue]:
        errors = []
        code = row.get("code")
        if code:
            exists = db.query(models.Hospital.id).filter(models.Hospital.code == code).first()
            if exists:
                errors.append(error(row_number, "code", f"Hospital code '{code}' already exists", "DUPLICATE_CODE"))
        return errors

    def build_entity(self, db, row, batch_id: str):
        return models.Hospital(
            code=row["code"],
            name=row["name"],
            province=row.get("province"),
            is_active=row.get("is_active") if row.get("is_active") is not None else True,
            import_batch_id=batch_id,
        )

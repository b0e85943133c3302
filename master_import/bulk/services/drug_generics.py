from typing import List

from master_import.bulk.columns import TemplateColumn
from master_import.bulk.service import TableImportService
from master_import.bulk.types import ImportServiceMetadata, ValidationIssue, error
from master_import.db import models

METADATA = ImportServiceMetadata(
    module="drug_generics",
    domain="inventory",
    subdomain="master-data",
    display_name="Drug Generics",
    description="Generic drug catalog (working codes)",
    dependencies=(),
    priority=2,
    tags=("master-data", "required", "inventory"),
    supports_rollback=True,
    version="1.0.0",
)

DOSAGE_FORMS = ("TAB", "CAP", "INJ", "SYR", "CRE", "OIN", "SUP", "DRO", "INH", "SOL")

COLUMNS = [
    TemplateColumn(
        "working_code",
        "Working Code",
        required=True,
        max_length=20,
        pattern=r"^[A-Z0-9]+$",
        description="Unique working code of the generic",
        example="1000001",
    ),
    TemplateColumn("generic_name", "Generic Name", required=True, max_length=255, example="Paracetamol"),
    TemplateColumn(
        "dosage_form",
        "Dosage Form",
        allowed_values=DOSAGE_FORMS,
        description="Dosage form abbreviation",
        example="TAB",
    ),
    TemplateColumn("strength", "Strength", type="number", example="500"),
    TemplateColumn("strength_unit", "Strength Unit", max_length=20, example="mg"),
    TemplateColumn("is_active", "Is Active", type="boolean", example="true"),
]


class DrugGenericsImportService(TableImportService):
    model = models.DrugGeneric

    def get_metadata(self) -> ImportServiceMetadata:
        return METADATA

    def get_template_columns(self) -> List[TemplateColumn]:
        return list(COLUMNS)

    def unique_columns(self) -> List[str]:
        return ["working_code"]

    def validate_row(self, db, row, row_number: int) -> List[ValidationIssue]:
        issues = []
        working_code = row.get("working_code")
        if working_code:
            existing = (
                db.query(models.DrugGeneric.id)
                .filter(models.DrugGeneric.working_code == working_code)
                .first()
            )
            if existing:
                issues.append(
                    error(
                        row_number,
                        "working_code",
                        f"Working code '{working_code}' already exists in database",
                        "DUPLICATE_CODE",
                    )
                )

        strength = row.get("strength")
        if strength is not None and strength <= 0:
            issues.append(error(row_number, "strength", "Strength must be greater than zero", "INVALID_VALUE"))
        if strength is not None and not row.get("strength_unit"):
            issues.append(
                error(row_number, "strength_unit", "Strength Unit is required when Strength is set", "REQUIRED_FIELD")
            )
        return issues

    def build_entity(self, db, row, batch_id: str):
        strength = row.get("strength")
        return models.DrugGeneric(
            working_code=row["working_code"],
            generic_name=row["generic_name"],
            dosage_form=row.get("dosage_form"),
            strength=float(strength) if strength is not None else None,
            strength_unit=row.get("strength_unit"),
            is_active=row.get("is_active") if row.get("is_active") is not None else True,
            import_batch_id=batch_id,
        )

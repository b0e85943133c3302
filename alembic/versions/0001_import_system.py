"""master data tables and import pipeline tables

Revision ID: 0001_import_system
Revises:
Create Date: 2026-10-18 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_import_system"
down_revision = None
branch_labels = None
depends_on = None

TIMESTAMP_DEFAULT = sa.text("(CURRENT_TIMESTAMP)")


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=TIMESTAMP_DEFAULT),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=TIMESTAMP_DEFAULT),
    ]


def upgrade() -> None:
    op.create_table(
        "hospitals",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("province", sa.String(length=100), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("import_batch_id", sa.String(length=100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_hospitals_import_batch_id", "hospitals", ["import_batch_id"])

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("dept_code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("dept_name", sa.String(length=255), nullable=False),
        sa.Column("hospital_id", sa.Integer(), sa.ForeignKey("hospitals.id"), nullable=True),
        sa.Column("description", sa.String(length=500), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("import_batch_id", sa.String(length=100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_departments_import_batch_id", "departments", ["import_batch_id"])

    op.create_table(
        "drug_generics",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("working_code", sa.String(length=20), nullable=False, unique=True),
        sa.Column("generic_name", sa.String(length=255), nullable=False),
        sa.Column("dosage_form", sa.String(length=100), nullable=True),
        sa.Column("strength", sa.Float(), nullable=True),
        sa.Column("strength_unit", sa.String(length=20), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("import_batch_id", sa.String(length=100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_drug_generics_import_batch_id", "drug_generics", ["import_batch_id"])

    op.create_table(
        "drugs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("drug_code", sa.String(length=50), nullable=False, unique=True),
        sa.Column("trade_name", sa.String(length=255), nullable=False),
        sa.Column("generic_id", sa.Integer(), sa.ForeignKey("drug_generics.id"), nullable=False),
        sa.Column("department_id", sa.Integer(), sa.ForeignKey("departments.id"), nullable=True),
        sa.Column("manufacturer", sa.String(length=255), nullable=True),
        sa.Column("package_size", sa.Integer(), nullable=True),
        sa.Column("unit_price", sa.Float(), nullable=True),
        sa.Column("registered_at", sa.DateTime(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("import_batch_id", sa.String(length=100), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_drugs_import_batch_id", "drugs", ["import_batch_id"])

    op.create_table(
        "import_service_registry",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("module_name", sa.String(length=100), nullable=False, unique=True),
        sa.Column("domain", sa.String(length=50), nullable=False),
        sa.Column("subdomain", sa.String(length=50), nullable=True),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("tags", sa.JSON(), nullable=False),
        sa.Column("supports_rollback", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("version", sa.String(length=20), nullable=True),
        sa.Column("import_status", sa.String(length=20), nullable=False, server_default="not_started"),
        sa.Column("last_import_date", sa.DateTime(), nullable=True),
        sa.Column("last_import_job_id", sa.String(), nullable=True),
        sa.Column("record_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discovered_at", sa.DateTime(), nullable=False, server_default=TIMESTAMP_DEFAULT),
        *_timestamps(),
    )
    op.create_index("ix_import_service_registry_domain", "import_service_registry", ["domain"])
    op.create_index("ix_import_service_registry_priority", "import_service_registry", ["priority"])
    op.create_index("ix_import_service_registry_import_status", "import_service_registry", ["import_status"])

    op.create_table(
        "import_sessions",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("module_name", sa.String(length=100), nullable=False),
        sa.Column("state", sa.String(length=20), nullable=False, server_default="created"),
        sa.Column("file_name", sa.String(length=255), nullable=False),
        sa.Column("file_type", sa.String(length=10), nullable=False),
        sa.Column("file_size_bytes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("file_url", sa.String(), nullable=True),
        sa.Column("headers_json", sa.JSON(), nullable=True),
        sa.Column("rows_json", sa.JSON(), nullable=False),
        sa.Column("validation_json", sa.JSON(), nullable=True),
        sa.Column("batch_id", sa.String(length=100), nullable=True),
        sa.Column("created_by", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False, server_default=TIMESTAMP_DEFAULT),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False, server_default=TIMESTAMP_DEFAULT),
    )
    op.create_index("ix_import_sessions_module_name", "import_sessions", ["module_name"])
    op.create_index("ix_import_sessions_state", "import_sessions", ["state"])
    op.create_index("ix_import_sessions_expires_at", "import_sessions", ["expires_at"])

    op.create_table(
        "import_history",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("batch_id", sa.String(length=100), nullable=False, unique=True),
        sa.Column("session_id", sa.String(), nullable=True),
        sa.Column("module_name", sa.String(length=100), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="running"),
        sa.Column("rows_attempted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rows_inserted", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rows_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rows_skipped", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("warning_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chunks_total", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("chunks_completed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("duration_ms", sa.Integer(), nullable=True),
        sa.Column("imported_by", sa.String(), nullable=True),
        sa.Column("file_name", sa.String(length=255), nullable=True),
        sa.Column("file_size_bytes", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("error_summary", sa.JSON(), nullable=True),
        sa.Column("can_rollback", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("rolled_back_at", sa.DateTime(), nullable=True),
        sa.Column("rolled_back_by", sa.String(), nullable=True),
        sa.Column("rows_rolled_back", sa.Integer(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_import_history_session_id", "import_history", ["session_id"])
    op.create_index("ix_import_history_module_name", "import_history", ["module_name"])
    op.create_index("ix_import_history_status", "import_history", ["status"])


def downgrade() -> None:
    op.drop_index("ix_import_history_status", table_name="import_history")
    op.drop_index("ix_import_history_module_name", table_name="import_history")
    op.drop_index("ix_import_history_session_id", table_name="import_history")
    op.drop_table("import_history")

    op.drop_index("ix_import_sessions_expires_at", table_name="import_sessions")
    op.drop_index("ix_import_sessions_state", table_name="import_sessions")
    op.drop_index("ix_import_sessions_module_name", table_name="import_sessions")
    op.drop_table("import_sessions")

    op.drop_index("ix_import_service_registry_import_status", table_name="import_service_registry")
    op.drop_index("ix_import_service_registry_priority", table_name="import_service_registry")
    op.drop_index("ix_import_service_registry_domain", table_name="import_service_registry")
    op.drop_table("import_service_registry")

    for table in ("drugs", "drug_generics", "departments", "hospitals"):
        op.drop_index(f"ix_{table}_import_batch_id", table_name=table)
        op.drop_table(table)

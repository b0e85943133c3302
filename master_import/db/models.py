import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, JSON, String, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class Hospital(Base):
    __tablename__ = "hospitals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    name = Column(String(255), nullable=False)
    province = Column(String(100), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    import_batch_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    departments = relationship("Department", back_populates="hospital")


class Department(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, autoincrement=True)
    dept_code = Column(String(50), nullable=False, unique=True)
    dept_name = Column(String(255), nullable=False)
    hospital_id = Column(Integer, ForeignKey("hospitals.id"), nullable=True)
    description = Column(String(500), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    import_batch_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    hospital = relationship("Hospital", back_populates="departments")


class DrugGeneric(Base):
    __tablename__ = "drug_generics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    working_code = Column(String(20), nullable=False, unique=True)
    generic_name = Column(String(255), nullable=False)
    dosage_form = Column(String(100), nullable=True)
    strength = Column(Float, nullable=True)
    strength_unit = Column(String(20), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    import_batch_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    drugs = relationship("Drug", back_populates="generic")


class Drug(Base):
    __tablename__ = "drugs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    drug_code = Column(String(50), nullable=False, unique=True)
    trade_name = Column(String(255), nullable=False)
    generic_id = Column(Integer, ForeignKey("drug_generics.id"), nullable=False)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)
    manufacturer = Column(String(255), nullable=True)
    package_size = Column(Integer, nullable=True)
    unit_price = Column(Float, nullable=True)
    registered_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    import_batch_id = Column(String(100), nullable=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    generic = relationship("DrugGeneric", back_populates="drugs")


class ImportServiceRegistry(Base):
    __tablename__ = "import_service_registry"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_name = Column(String(100), nullable=False, unique=True)
    domain = Column(String(50), nullable=False, index=True)
    subdomain = Column(String(50), nullable=True)
    display_name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    dependencies = Column(JSON, nullable=False, default=list)
    priority = Column(Integer, nullable=False, default=100, index=True)
    tags = Column(JSON, nullable=False, default=list)
    supports_rollback = Column(Boolean, nullable=False, default=False)
    version = Column(String(20), nullable=True)
    import_status = Column(String(20), nullable=False, default="not_started", index=True)
    last_import_date = Column(DateTime, nullable=True)
    last_import_job_id = Column(String, nullable=True)
    record_count = Column(Integer, nullable=False, default=0)
    discovered_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ImportSession(Base):
    __tablename__ = "import_sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    module_name = Column(String(100), nullable=False, index=True)
    state = Column(String(20), nullable=False, default="created", index=True)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(10), nullable=False)
    file_size_bytes = Column(Integer, nullable=False, default=0)
    file_url = Column(String, nullable=True)
    headers_json = Column(JSON, nullable=True)
    rows_json = Column(JSON, nullable=False, default=list)
    validation_json = Column(JSON, nullable=True)
    batch_id = Column(String(100), nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)


class ImportHistory(Base):
    __tablename__ = "import_history"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    batch_id = Column(String(100), nullable=False, unique=True)
    session_id = Column(String, nullable=True, index=True)
    module_name = Column(String(100), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="running", index=True)
    rows_attempted = Column(Integer, nullable=False, default=0)
    rows_inserted = Column(Integer, nullable=False, default=0)
    rows_failed = Column(Integer, nullable=False, default=0)
    rows_skipped = Column(Integer, nullable=False, default=0)
    warning_count = Column(Integer, nullable=False, default=0)
    chunks_total = Column(Integer, nullable=False, default=0)
    chunks_completed = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    duration_ms = Column(Integer, nullable=True)
    imported_by = Column(String, nullable=True)
    file_name = Column(String(255), nullable=True)
    file_size_bytes = Column(Integer, nullable=True)
    error_message = Column(Text, nullable=True)
    error_summary = Column(JSON, nullable=True)
    can_rollback = Column(Boolean, nullable=False, default=False)
    rolled_back_at = Column(DateTime, nullable=True)
    rolled_back_by = Column(String, nullable=True)
    rows_rolled_back = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

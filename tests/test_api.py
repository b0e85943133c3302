import unittest
from types import SimpleNamespace
from unittest.mock import patch

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from master_import.api.v1.imports import get_orchestrator
from master_import.bulk.orchestrator import ImportOrchestrator
from master_import.bulk.registry import build_default_registry
from master_import.core.config import ImportConfig
from master_import.db import models
from master_import.db.session import configure_sqlite, get_db
from master_import.main import app

DEPARTMENTS_CSV = (
    "Department Code,Department Name,Hospital Code,Description,Is Active\n"
    "ER,Emergency,,,true\n"
    "OPD,Outpatient,,,true\n"
).encode("utf-8")


class ImportApiTests(unittest.TestCase):
    def setUp(self):
        self.engine = create_engine(
            "sqlite:///:memory:",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        configure_sqlite(self.engine)
        models.Base.metadata.create_all(self.engine)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        registry = build_default_registry()
        with self.SessionLocal() as db:
            registry.discover_all(db)
        self.orchestrator = ImportOrchestrator(registry, ImportConfig())

        def override_get_db():
            db = self.SessionLocal()
            try:
                yield db
            finally:
                db.close()

        app.dependency_overrides[get_db] = override_get_db
        app.dependency_overrides[get_orchestrator] = lambda: self.orchestrator
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        self.engine.dispose()

    def _upload(self, module="departments", content=DEPARTMENTS_CSV, name="departments.csv"):
        return self.client.post(f"/api/imports/{module}/upload", files={"file": (name, content, "text/csv")})

    def test_health(self):
        response = self.client.get("/api/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_registry_listing(self):
        response = self.client.get("/api/imports/registry")
        self.assertEqual(response.status_code, 200)
        modules = [item["module"] for item in response.json()]
        self.assertEqual(modules, ["hospitals", "departments", "drug_generics", "drugs"])

    def test_execution_order_for_subset(self):
        response = self.client.get("/api/imports/order", params={"modules": ["drugs"]})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["order"], ["hospitals", "departments", "drug_generics", "drugs"])

    def test_template_download(self):
        response = self.client.get("/api/imports/templates/departments", params={"fmt": "csv"})
        self.assertEqual(response.status_code, 200)
        self.assertIn("template_departments", response.headers["content-disposition"])
        self.assertTrue(response.content.decode("utf-8-sig").startswith("Department Code,"))

    def test_upload_validate_execute_rollback(self):
        upload = self._upload()
        self.assertEqual(upload.status_code, 200)
        session_id = upload.json()["session_id"]
        self.assertEqual(upload.json()["total_rows"], 2)

        validation = self.client.post(f"/api/imports/sessions/{session_id}/validate")
        self.assertEqual(validation.status_code, 200)
        self.assertTrue(validation.json()["is_valid"])

        execution = self.client.post(f"/api/imports/sessions/{session_id}/execute", json={"batch_size": 1})
        self.assertEqual(execution.status_code, 200)
        body = execution.json()
        self.assertEqual(body["status"], "completed")
        self.assertEqual(body["rows_inserted"], 2)
        self.assertEqual(body["chunks_total"], 2)

        batch = self.client.get(f"/api/imports/batches/{body['batch_id']}")
        self.assertEqual(batch.json()["status"], "completed")
        history = self.client.get("/api/imports/history", params={"module": "departments"})
        self.assertEqual(len(history.json()), 1)

        rollback = self.client.post(f"/api/imports/batches/{body['batch_id']}/rollback", json={"rolled_back_by": "ops"})
        self.assertEqual(rollback.status_code, 200)
        self.assertEqual(rollback.json()["rows_deleted"], 2)

    def test_validation_errors_block_execute_with_409(self):
        content = DEPARTMENTS_CSV + "ER,Duplicate,,,true\n".encode("utf-8")
        session_id = self._upload(content=content).json()["session_id"]
        self.client.post(f"/api/imports/sessions/{session_id}/validate")

        response = self.client.post(f"/api/imports/sessions/{session_id}/execute", json={})
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.json()["detail"]["code"], "VALIDATION_ERRORS")

        report = self.client.get(f"/api/imports/sessions/{session_id}/error-report")
        self.assertEqual(report.status_code, 200)

    def test_unknown_module_is_404(self):
        response = self._upload(module="nurses")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["detail"]["code"], "UNKNOWN_MODULE")

    def test_unsupported_extension_is_400(self):
        response = self._upload(name="departments.txt")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["code"], "UNSUPPORTED_FORMAT")

    def test_unknown_batch_rollback_is_404(self):
        response = self.client.post("/api/imports/batches/nope/rollback")
        self.assertEqual(response.status_code, 404)

    def test_cancel_session(self):
        session_id = self._upload().json()["session_id"]
        response = self.client.post(f"/api/imports/sessions/{session_id}/cancel")
        self.assertEqual(response.json()["state"], "cancelled")
        again = self.client.post(f"/api/imports/sessions/{session_id}/cancel")
        self.assertEqual(again.status_code, 409)

    @patch("master_import.api.v1.imports.get_settings")
    def test_worker_requires_secret(self, mock_settings):
        mock_settings.return_value = SimpleNamespace(IMPORT_TASKS_SECRET="s3cret")
        session_id = self._upload().json()["session_id"]

        denied = self.client.post(f"/api/imports/worker/execute/{session_id}", json={})
        self.assertEqual(denied.status_code, 403)

        skipped = self.client.post(
            f"/api/imports/worker/execute/{session_id}",
            json={},
            headers={"X-Tasks-Secret": "s3cret"},
        )
        self.assertEqual(skipped.json(), {"status": "skipped", "code": "INVALID_STATE"})

    @patch("master_import.api.v1.imports.enqueue_execute", return_value=False)
    def test_background_execute_falls_back_to_background_tasks(self, mock_enqueue):
        session_id = self._upload().json()["session_id"]
        self.client.post(f"/api/imports/sessions/{session_id}/validate")

        with patch("master_import.api.v1.imports._run_execute_inline") as mock_inline:
            response = self.client.post(
                f"/api/imports/sessions/{session_id}/execute",
                json={"background": True, "continue_on_error": True},
            )

        self.assertEqual(response.json()["status"], "queued")
        mock_enqueue.assert_called_once()
        mock_inline.assert_called_once()
        self.assertTrue(mock_inline.call_args.args[1]["continue_on_error"])


if __name__ == "__main__":
    unittest.main()

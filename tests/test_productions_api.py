import importlib
import io
import os
import sys
import unittest

from openpyxl import load_workbook


class ProductionApiTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.db = self.app_module.db
        self.db.create_all()
        self.client = self.app.test_client()

        models = importlib.import_module("models")
        self.models = models
        _, admin_role = self.app_module.seed_permissions()
        viewer_role = models.Role(name="viewer")
        viewer_role.permissions = models.Permission.query.filter_by(name="production.batch.view").all()

        admin = models.User(name="Admin", email="admin@example.com", role=admin_role)
        admin.set_password("Password!1")
        viewer = models.User(name="Viewer", email="viewer@example.com", role=viewer_role)
        viewer.set_password("Password!1")

        province = models.Province(name="JAWA BARAT")
        self.company = models.Company(name="PT Benih Nusantara", address="Jl. Raya 1", province=province)
        self.product = models.Product(name="Jagung Hibrida BN-1")
        self.seed_class = models.SeedClass(name="ES")
        self.variety = models.Variety(name="Varietas Hibrida")
        self.db.session.add_all([admin, viewer, viewer_role, self.company, self.product, self.seed_class, self.variety])
        self.db.session.commit()

        self.admin_token = self._login("admin@example.com")
        self.viewer_token = self._login("viewer@example.com")

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def _login(self, email):
        response = self.client.post(
            "/api/auth/login",
            json={"email": email, "password": "Password!1"},
        )
        self.assertEqual(response.status_code, 200)
        return response.get_json()["access_token"]

    def _auth(self, token=None):
        return {"Authorization": f"Bearer {token or self.admin_token}"}

    def _payload(self, **overrides):
        payload = {
            "product_id": self.product.id,
            "company_id": self.company.id,
            "group_number": "G-01",
            "lot_number": "LOT-001",
            "code_1": "a",
            "code_2": "b",
            "code_3": "c",
            "code_4": "1",
            "lot_total": 1500,
            "lab_result_serial_number": "1000001",
            "lot_seed_class_id": self.seed_class.id,
            "lot_variety_id": self.variety.id,
            "cert_realization_harvest_date": "2024-12-15",
            "test_param_germination": 85.0,
        }
        payload.update(overrides)
        return payload

    def _create(self, **overrides):
        response = self.client.post("/api/productions", headers=self._auth(), json=self._payload(**overrides))
        self.assertEqual(response.status_code, 201, response.get_json())
        return response.get_json()

    def _generate(self, production_id, **payload):
        payload.setdefault("qr_token", "tok123")
        return self.client.post(
            f"/api/productions/{production_id}/registers/generate",
            headers=self._auth(),
            json=payload,
        )

    def test_create_production_returns_register_range(self):
        created = self._create()

        self.assertEqual(created["code_1"], "A")
        self.assertEqual(created["register_count"], 0)
        self.assertFalse(created["is_generated"])
        self.assertEqual(
            created["register_range"],
            {
                "start_code": "ABC1",
                "end_code": "ABC2",
                "start_serial": 1000001,
                "end_serial": 1001500,
                "quantity": 1500,
                "increment": 1,
            },
        )

    def test_create_production_validation(self):
        response = self.client.post("/api/productions", headers=self._auth(), json=self._payload(code_4="-"))
        self.assertEqual(response.status_code, 400)
        self.assertIn("code_4", response.get_json()["details"])

        response = self.client.post(
            "/api/productions",
            headers=self._auth(),
            json=self._payload(lab_result_serial_number="SER-1"),
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/productions",
            headers=self._auth(),
            json=self._payload(code_4="Z", lot_total=2000),
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/api/productions", headers=self._auth(), json=self._payload(product_id=999))
        self.assertEqual(response.status_code, 400)
        self.assertIn("product_id 999 does not exist", response.get_json()["details"])

        self._create()
        response = self.client.post("/api/productions", headers=self._auth(), json=self._payload())
        self.assertEqual(response.status_code, 409)

    def test_viewer_can_list_but_not_modify(self):
        self._create()

        response = self.client.get("/api/productions", headers=self._auth(self.viewer_token))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["total"], 1)

        response = self.client.post(
            "/api/productions",
            headers=self._auth(self.viewer_token),
            json=self._payload(lot_number="LOT-002"),
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.get("/api/productions")
        self.assertEqual(response.status_code, 401)

    def test_list_filters_and_pagination(self):
        first = self._create(lot_number="LOT-001", lot_total=10)
        self._create(lot_number="LOT-002", lot_total=10, cert_realization_harvest_date="2025-01-20")
        self._create(lot_number="LOT-003", lot_total=10, cert_realization_harvest_date="2025-02-01")
        self.assertEqual(self._generate(first["id"]).status_code, 200)

        response = self.client.get("/api/productions?status=generated", headers=self._auth())
        data = response.get_json()
        self.assertEqual([item["lot_number"] for item in data["items"]], ["LOT-001"])

        response = self.client.get(
            "/api/productions?status=not_generated&sort_by=lot_number&sort_dir=asc",
            headers=self._auth(),
        )
        self.assertEqual([item["lot_number"] for item in response.get_json()["items"]], ["LOT-002", "LOT-003"])

        response = self.client.get("/api/productions?date_from=2025-01-01&date_to=2025-01-31", headers=self._auth())
        self.assertEqual([item["lot_number"] for item in response.get_json()["items"]], ["LOT-002"])

        response = self.client.get("/api/productions?per_page=2&page=2&sort_by=lot_number&sort_dir=asc", headers=self._auth())
        data = response.get_json()
        self.assertEqual(data["total"], 3)
        self.assertEqual(data["pages"], 2)
        self.assertEqual([item["lot_number"] for item in data["items"]], ["LOT-003"])

        response = self.client.get("/api/productions?sort_by=password", headers=self._auth())
        self.assertEqual(response.status_code, 400)

        response = self.client.get("/api/productions?date_from=yesterday", headers=self._auth())
        self.assertEqual(response.status_code, 400)

    def test_generation_locks_register_fields(self):
        created = self._create(lot_total=1200)
        production_id = created["id"]

        response = self._generate(production_id, job_id="job-1")
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["generated"], 1200)
        self.assertEqual(body["job_id"], "job-1")
        self.assertEqual(body["total_batches"], 3)

        response = self.client.get(f"/api/progress/{body['job_id']}", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        progress = response.get_json()
        self.assertEqual(progress["status"], "completed")
        self.assertEqual(progress["percentage"], 100)
        self.assertEqual(progress["total_inserted"], 1200)
        self.assertEqual(progress["poll_interval_ms"], 300)

        response = self._generate(production_id, job_id="job-2")
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["job_id"], "job-2")

        response = self.client.put(
            f"/api/productions/{production_id}",
            headers=self._auth(),
            json=self._payload(lot_total=1300),
        )
        self.assertEqual(response.status_code, 409)
        self.assertEqual(response.get_json()["details"], ["lot_total"])

        response = self.client.patch(
            f"/api/productions/{production_id}",
            headers=self._auth(),
            json={"clearance_number": "CLR-9"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["clearance_number"], "CLR-9")
        self.assertEqual(response.get_json()["register_count"], 1200)

        response = self.client.delete(f"/api/productions/{production_id}", headers=self._auth())
        self.assertEqual(response.status_code, 409)

        response = self.client.get(
            f"/api/productions/{production_id}/registers?per_page=2&q=ABC2",
            headers=self._auth(),
        )
        data = response.get_json()
        self.assertEqual(data["total"], 200)
        self.assertEqual([item["serial_number"] for item in data["items"]], ["1001001", "1001002"])

    def test_generate_requests_are_validated(self):
        created = self._create(lot_total=10)

        response = self._generate(created["id"], job_id="not a valid id!")
        self.assertEqual(response.status_code, 400)

        response = self._generate(created["id"], qr_token="")
        self.assertEqual(response.status_code, 400)

        response = self._generate(9999)
        self.assertEqual(response.status_code, 404)

        response = self.client.post(
            f"/api/productions/{created['id']}/registers/generate",
            headers=self._auth(self.viewer_token),
            json={"qr_token": "tok"},
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.get("/api/progress/unknown-job", headers=self._auth())
        self.assertEqual(response.status_code, 404)

    def test_unguarded_update_and_delete_before_generation(self):
        created = self._create(lot_total=10)

        response = self.client.put(
            f"/api/productions/{created['id']}",
            headers=self._auth(),
            json=self._payload(lot_total=20),
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["register_range"]["end_serial"], 1000020)

        response = self.client.delete(f"/api/productions/{created['id']}", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        response = self.client.get(f"/api/productions/{created['id']}", headers=self._auth())
        self.assertEqual(response.status_code, 404)

    def test_bulk_generate_reports_partial_failure(self):
        first = self._create(lot_number="LOT-A", lot_total=10)
        second = self._create(lot_number="LOT-B", lot_total=10)
        self.assertEqual(self._generate(second["id"]).status_code, 200)

        response = self.client.post(
            "/api/productions/registers/bulk-generate",
            headers=self._auth(),
            json={
                "entries": [
                    {"production_id": first["id"], "qr_token": "tok-a"},
                    {"production_id": second["id"], "qr_token": "tok-b"},
                ]
            },
        )
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertTrue(data["success"])
        self.assertEqual(data["success_count"], 1)
        self.assertEqual(data["failure_count"], 1)
        self.assertEqual(data["total_generated"], 10)

        response = self.client.post(
            "/api/productions/registers/bulk-generate",
            headers=self._auth(),
            json={"entries": []},
        )
        self.assertEqual(response.status_code, 400)

    def test_token_preview_matches_files_to_lots(self):
        created = self._create(lot_number="LOT-001", lot_total=10)

        response = self.client.post(
            "/api/productions/tokens/preview",
            headers=self._auth(),
            data={
                "files": [
                    (io.BytesIO(b'serial,token\n1,"abc123"\n'), "LOT-001.csv"),
                    (io.BytesIO(b"serial,token\n1,zzz\n"), "LOT-404.csv"),
                    (io.BytesIO(b"serial,token\n"), "LOT-001-empty.csv"),
                ]
            },
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(len(data["entries"]), 1)
        entry = data["entries"][0]
        self.assertEqual(entry["production_id"], created["id"])
        self.assertEqual(entry["qr_token"], "abc123")
        self.assertFalse(entry["already_generated"])
        self.assertEqual(sorted(error["file_name"] for error in data["errors"]), ["LOT-001-empty.csv", "LOT-404.csv"])

    def test_import_csv_skips_invalid_rows(self):
        csv_body = (
            "product_id,company_id,group_number,lot_number,lot_total,lab_result_serial_number,lot_variety_id\n"
            f"{self.product.id},{self.company.id},G-10,LOT-100,500,2000001,{self.variety.id}\n"
            f"{self.product.id},{self.company.id},G-10,,500,2000001,\n"
            f"999,{self.company.id},G-11,LOT-101,500,,\n"
            f"{self.product.id},{self.company.id},G-10,LOT-100,500,,\n"
            f"{self.product.id},{self.company.id},G-12,LOT-102,,,777\n"
        ).encode("utf-8")

        response = self.client.post(
            "/api/productions/import/preview",
            headers=self._auth(),
            data={"file": (io.BytesIO(csv_body), "productions.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 200)
        preview = response.get_json()
        self.assertEqual(preview["total_rows"], 5)
        self.assertEqual(len(preview["preview"]), 5)
        self.assertEqual(preview["headers"][0], "product_id")

        response = self.client.post(
            "/api/productions/import",
            headers=self._auth(),
            data={"file": (io.BytesIO(csv_body), "productions.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 200)
        summary = response.get_json()
        self.assertEqual(summary["imported"], 2)
        self.assertEqual(summary["skipped"], 3)
        self.assertEqual(summary["total_processed"], 5)
        self.assertEqual(len(summary["errors"]), 3)

        Production = self.models.Production
        imported = Production.query.filter_by(lot_number="LOT-100").one()
        self.assertEqual(imported.code_1 + imported.code_2 + imported.code_3 + imported.code_4, "ABCD")
        self.assertEqual(imported.lot_variety_id, self.variety.id)
        self.assertEqual(imported.seed_source_company_id, self.company.id)
        self.assertIsNotNone(imported.lab_result_expired_date)

        defaulted = Production.query.filter_by(lot_number="LOT-102").one()
        self.assertEqual(defaulted.lot_total, 0)
        self.assertIsNone(defaulted.lot_variety_id)
        self.assertIsNone(defaulted.lab_result_serial_number)

    def test_import_checks_codes_like_the_form(self):
        csv_body = (
            "product_id,company_id,group_number,lot_number,code_1,code_2,code_3,code_4,lot_total,lab_result_serial_number\n"
            f"{self.product.id},{self.company.id},G-20,LOT-200,#,B,C,D,10,3000001\n"
            f"{self.product.id},{self.company.id},G-20,LOT-201,A,B,C,Z,5000,3000001\n"
            f"{self.product.id},{self.company.id},G-20,LOT-202,A,BB,C,D,10,3000001\n"
            f"{self.product.id},{self.company.id},G-20,LOT-203,A,B,C,D,10,30A0001\n"
            f"{self.product.id},{self.company.id},G-20,LOT-204,x,y,z,1,2500,3000001\n"
        ).encode("utf-8")

        response = self.client.post(
            "/api/productions/import",
            headers=self._auth(),
            data={"file": (io.BytesIO(csv_body), "productions.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 200)
        summary = response.get_json()
        self.assertEqual(summary["imported"], 1)
        self.assertEqual(summary["skipped"], 4)
        self.assertTrue(summary["errors"][0].startswith("Row 2: code_1"))
        self.assertIn("runs past", summary["errors"][1])
        self.assertTrue(summary["errors"][2].startswith("Row 4: code_2"))
        self.assertIn("digits only", summary["errors"][3])

        Production = self.models.Production
        self.assertEqual([p.lot_number for p in Production.query.all()], ["LOT-204"])
        imported = Production.query.filter_by(lot_number="LOT-204").one()
        self.assertEqual(imported.register_range().end_code, "XYZ3")

    def test_import_rejects_unsupported_files(self):
        response = self.client.post(
            "/api/productions/import",
            headers=self._auth(),
            data={"file": (io.BytesIO(b"hello"), "productions.txt")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/productions/import",
            headers=self._auth(),
            data={"file": (io.BytesIO(b"product_id,company_id\n"), "productions.csv")},
            content_type="multipart/form-data",
        )
        self.assertEqual(response.status_code, 400)

    def test_template_download(self):
        response = self.client.get("/api/productions/template", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        workbook = load_workbook(io.BytesIO(response.data))
        sheet = workbook.active
        headers = [cell.value for cell in sheet[1]]
        self.assertEqual(headers[0], "product_id")
        self.assertIn("lab_result_serial_number", headers)
        self.assertEqual(sheet.max_row, 2)

    def test_export_writes_certification_layout(self):
        response = self.client.post("/api/productions/export", headers=self._auth(), json={})
        self.assertEqual(response.status_code, 400)

        self._create(lot_number="LOT-001", lot_total=10)
        response = self.client.post("/api/productions/export", headers=self._auth(), json={"status": "not_generated"})
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["Content-Disposition"].startswith("attachment"))

        sheet = load_workbook(io.BytesIO(response.data)).active
        self.assertEqual(sheet.cell(row=1, column=1).value, "CATATAN")
        self.assertEqual(sheet.cell(row=3, column=1).value, "NO")
        self.assertEqual(sheet.cell(row=8, column=1).value, 1)
        self.assertEqual(sheet.cell(row=8, column=2).value, "JAWA BARAT")
        self.assertEqual(sheet.cell(row=8, column=4).value, "PT Benih Nusantara")
        self.assertEqual(sheet.cell(row=8, column=41).value, "LOT-001")
        self.assertEqual(sheet.cell(row=8, column=43).value, "Varietas Hibrida")
        self.assertEqual(sheet.cell(row=8, column=53).value, "1000001")

        response = self.client.post(
            "/api/productions/export",
            headers=self._auth(),
            json={"production_ids": ["1"]},
        )
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

import importlib
import os
import sys
import unittest

from register_generation import generate_registers


class VerificationApiTestCase(unittest.TestCase):
    def setUp(self):
        os.environ["DATABASE_URL"] = "sqlite:///:memory:"
        if "app" in sys.modules:
            self.app_module = importlib.reload(sys.modules["app"])
        else:
            self.app_module = importlib.import_module("app")

        self.app = self.app_module.create_app()
        self.app.testing = True
        self.app.config["ADMIN_NOTIFICATION_EMAILS"] = ["qa@example.com"]
        self.ctx = self.app.app_context()
        self.ctx.push()
        self.db = self.app_module.db
        self.db.create_all()
        self.client = self.app.test_client()

        models = importlib.import_module("models")
        company = models.Company(name="PT Benih Nusantara")
        product = models.Product(
            name="Jagung Hibrida BN-1",
            plant_type="Jagung",
            active_ingredients=["Metalaksil"],
        )
        self.db.session.add_all([company, product])
        self.db.session.commit()

        self.production = models.Production(
            product_id=product.id,
            company_id=company.id,
            group_number="G-01",
            lot_number="LOT-777",
            code_1="A",
            code_2="B",
            code_3="C",
            code_4="1",
            lot_total=1200,
            lab_result_serial_number="5000001",
            test_param_germination=87.5,
        )
        self.db.session.add(self.production)
        self.db.session.commit()
        generate_registers(self.production, "tok")

    def tearDown(self):
        self.db.session.remove()
        self.db.drop_all()
        self.ctx.pop()
        os.environ.pop("DATABASE_URL", None)
        if "app" in sys.modules:
            del sys.modules["app"]

    def test_verify_by_serial_number(self):
        response = self.client.get("/api/public/verify/5001100")
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertTrue(body["success"])
        self.assertEqual(body["meta"], {"model_type": "production", "verification_type": "serial"})

        data = body["data"]
        self.assertEqual(data["serial_number"], "5001100")
        self.assertEqual(data["production_code"], "ABC2")
        self.assertEqual(data["search_key"], "ABC25001100")
        self.assertEqual(data["lot_number"], "LOT-777")
        self.assertEqual(data["product_name"], "Jagung Hibrida BN-1")
        self.assertEqual(data["active_ingredients"], ["Metalaksil"])
        self.assertEqual(data["germination"], 87.5)
        self.assertEqual(data["province"], "JAWA TIMUR")
        self.assertTrue(data["qr_code_link"].endswith("?token=tok&seri=5001100"))

    def test_verify_by_search_key(self):
        response = self.client.get("/api/public/verify/ABC15000001")
        self.assertEqual(response.status_code, 200)
        data = response.get_json()["data"]
        self.assertEqual(data["serial_number"], "5000001")
        self.assertEqual(data["production_code"], "ABC1")

    def test_verify_by_lot_number(self):
        response = self.client.get("/api/public/verify/LOT-777")
        self.assertEqual(response.status_code, 200)
        body = response.get_json()
        self.assertEqual(body["meta"]["verification_type"], "lot")
        self.assertIsNone(body["data"]["serial_number"])
        self.assertEqual(body["data"]["production_code"], "ABC1")

    def test_unknown_code_is_reportable(self):
        response = self.client.get("/api/public/verify/9999999")
        self.assertEqual(response.status_code, 404)
        body = response.get_json()
        self.assertFalse(body["success"])
        self.assertEqual(body["error_code"], "NOT_FOUND")
        self.assertTrue(body["reportable"])

        response = self.client.get(f"/api/public/verify/{'9' * 200}")
        self.assertEqual(response.status_code, 400)

    def test_report_failure_notifies_admins(self):
        mail = self.app_module.mail
        with mail.record_messages() as outbox:
            response = self.client.post(
                "/api/public/report-failure",
                json={"serial_number": "9999999", "error_message": "Label shows a different lot"},
            )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(outbox), 1)
        self.assertEqual(outbox[0].recipients, ["qa@example.com"])
        self.assertIn("9999999", outbox[0].body)

        report = self.db.session.get(
            importlib.import_module("models").VerificationFailureReport,
            response.get_json()["id"],
        )
        self.assertEqual(report.error_message, "Label shows a different lot")

        response = self.client.post("/api/public/report-failure", json={"error_message": "no serial"})
        self.assertEqual(response.status_code, 400)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

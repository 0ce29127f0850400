import importlib
import json
import os
import sys
import unittest
from unittest.mock import patch


class ProgressApiTestCase(unittest.TestCase):
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
        admin = models.User(name="Admin", email="admin@example.com", role=admin_role)
        admin.set_password("Password!1")
        clerk = models.User(name="Clerk", email="clerk@example.com")
        clerk.set_password("Password!1")
        company = models.Company(name="PT Benih Nusantara", address="Jl. Raya 1")
        product = models.Product(name="Jagung Hibrida BN-1")
        self.db.session.add_all([admin, clerk, company, product])
        self.db.session.commit()

        self.production = models.Production(
            product_id=product.id,
            company_id=company.id,
            group_number="G-01",
            lot_number="LOT-001",
            code_1="A",
            code_2="B",
            code_3="C",
            code_4="1",
            lot_total=120,
            lab_result_serial_number="7000001",
        )
        self.db.session.add(self.production)
        self.db.session.commit()

        self.store = self.app.extensions["progress_store"]
        self.admin_token = self._login("admin@example.com")
        self.clerk_token = self._login("clerk@example.com")

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

    def _generate(self, job_id):
        return self.client.post(
            f"/api/productions/{self.production.id}/registers/generate",
            headers=self._auth(),
            json={"qr_token": "tok123", "job_id": job_id},
        )

    def _frames(self, body):
        return [json.loads(line[len("data: "):]) for line in body.split("\n") if line.startswith("data: ")]

    def test_processing_snapshot_reports_polling_contract(self):
        self.store.start("job-live", 4, 1000, lot_number="LOT-001", production_id=self.production.id)
        self.store.update("job-live", current_batch=1, total_inserted=250)

        response = self.client.get("/api/progress/job-live", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data["status"], "processing")
        self.assertFalse(data["terminal"])
        self.assertEqual(data["poll_interval_ms"], 300)
        self.assertEqual(data["percentage"], 25)
        self.assertEqual(data["current_batch"], 1)
        self.assertEqual(data["total_batches"], 4)
        self.assertIsNone(data["error"])

        response = self.client.get("/api/progress/job-live", headers=self._auth(self.clerk_token))
        self.assertEqual(response.status_code, 403)

    def test_poll_returns_404_once_the_record_expires(self):
        response = self._generate("job-ttl")
        self.assertEqual(response.status_code, 200)

        response = self.client.get("/api/progress/job-ttl", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.get_json()["terminal"])

        finished = self.store.get("job-ttl").finished_at
        self.store.clock = lambda: finished + self.store.ttl_seconds - 1
        response = self.client.get("/api/progress/job-ttl", headers=self._auth())
        self.assertEqual(response.status_code, 200)

        self.store.clock = lambda: finished + self.store.ttl_seconds
        response = self.client.get("/api/progress/job-ttl", headers=self._auth())
        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.get_json(),
            {"ok": False, "error": "Job not found or expired", "job_id": "job-ttl"},
        )

    def test_refused_generation_is_visible_to_pollers(self):
        self.assertEqual(self._generate("job-first").status_code, 200)

        response = self._generate("job-again")
        self.assertEqual(response.status_code, 409)

        response = self.client.get("/api/progress/job-again", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        data = response.get_json()
        self.assertEqual(data["status"], "error")
        self.assertTrue(data["terminal"])
        self.assertIn("already generated", data["error"])
        self.assertEqual(data["production_id"], self.production.id)

        response = self.client.get("/api/progress/job-again/stream", headers=self._auth())
        frames = self._frames(response.get_data(as_text=True))
        self.assertEqual([frame["status"] for frame in frames], ["error"])

    def test_stream_ends_with_terminal_frame(self):
        self.assertEqual(self._generate("job-stream").status_code, 200)

        response = self.client.get("/api/progress/job-stream/stream", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.mimetype, "text/event-stream")
        frames = self._frames(response.get_data(as_text=True))
        self.assertEqual(len(frames), 1)
        self.assertTrue(frames[-1]["terminal"])
        self.assertEqual(frames[-1]["status"], "completed")
        self.assertEqual(frames[-1]["total_inserted"], 120)

    def test_stream_follows_a_running_job(self):
        self.store.start("job-live", 2, 1000, production_id=self.production.id)
        steps = [
            lambda: self.store.update("job-live", current_batch=1, total_inserted=500),
            lambda: self.store.complete("job-live", total_inserted=1000),
        ]

        with patch("routes.progress.time.sleep", side_effect=lambda _seconds: steps.pop(0)()):
            response = self.client.get("/api/progress/job-live/stream", headers=self._auth())
            body = response.get_data(as_text=True)

        frames = self._frames(body)
        self.assertEqual([frame["total_inserted"] for frame in frames], [0, 500, 1000])
        self.assertEqual([frame["terminal"] for frame in frames], [False, False, True])
        self.assertEqual(steps, [])

    def test_stream_waits_for_a_job_that_has_not_started(self):
        def job_appears(_seconds):
            self.store.start("job-late", 1, 10)
            self.store.complete("job-late", total_inserted=10)

        with patch("routes.progress.time.sleep", side_effect=job_appears) as sleep:
            response = self.client.get("/api/progress/job-late/stream", headers=self._auth())
            body = response.get_data(as_text=True)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(sleep.call_count, 1)
        self.assertEqual(self._frames(body)[-1]["status"], "completed")

    def test_stream_gives_up_on_unknown_job(self):
        self.app.config["PROGRESS_STREAM_WAIT_SECONDS"] = 0
        response = self.client.get("/api/progress/unknown-job/stream", headers=self._auth())
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.get_json()["job_id"], "unknown-job")

        response = self.client.get("/api/progress/unknown-job/stream", headers=self._auth(self.clerk_token))
        self.assertEqual(response.status_code, 403)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

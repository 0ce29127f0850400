import importlib
import os
import sys
import unittest


class CatalogApiTestCase(unittest.TestCase):
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

        self.models = importlib.import_module("models")
        _, admin_role = self.app_module.seed_permissions()
        User = self.models.User
        admin = User(name="Admin", email="admin@example.com", role=admin_role)
        guest = User(name="Guest", email="guest@example.com")
        for user in (admin, guest):
            user.set_password("Password!1")
        self.db.session.add_all([admin, guest])
        self.db.session.commit()

        self.admin_token = self._login("admin@example.com")
        self.guest_token = self._login("guest@example.com")

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

    def test_company_with_province(self):
        response = self.client.post(
            "/api/catalog/provinces",
            headers=self._auth(),
            json={"name": "JAWA BARAT", "code": "32"},
        )
        self.assertEqual(response.status_code, 201)
        province_id = response.get_json()["id"]

        response = self.client.post(
            "/api/catalog/companies",
            headers=self._auth(),
            json={"name": "PT Benih Priangan", "address": "Jl. Raya 1", "province_id": province_id},
        )
        self.assertEqual(response.status_code, 201)
        company = response.get_json()
        self.assertEqual(company["province"], "JAWA BARAT")

        response = self.client.get(f"/api/catalog/companies/{company['id']}", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["address"], "Jl. Raya 1")

    def test_duplicate_name_conflicts(self):
        response = self.client.post("/api/catalog/varieties", headers=self._auth(), json={"name": "Bisi-18"})
        self.assertEqual(response.status_code, 201)

        response = self.client.post("/api/catalog/varieties", headers=self._auth(), json={"name": "Bisi-18"})
        self.assertEqual(response.status_code, 409)

        response = self.client.post("/api/catalog/varieties", headers=self._auth(), json={"name": ""})
        self.assertEqual(response.status_code, 400)
        self.assertIn("name", response.get_json()["details"])

    def test_list_search_and_ordering(self):
        for name in ("Jagung Pulut", "Padi Inpari", "Jagung Hibrida"):
            response = self.client.post("/api/catalog/products", headers=self._auth(), json={"name": name})
            self.assertEqual(response.status_code, 201)

        response = self.client.get("/api/catalog/products?q=jagung", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        self.assertEqual([item["name"] for item in response.get_json()], ["Jagung Hibrida", "Jagung Pulut"])

    def test_update_and_delete(self):
        response = self.client.post(
            "/api/catalog/seed-classes",
            headers=self._auth(),
            json={"name": "Benih Sebar", "code": "BR"},
        )
        item_id = response.get_json()["id"]

        response = self.client.put(
            f"/api/catalog/seed-classes/{item_id}",
            headers=self._auth(),
            json={"code": "ES"},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json(), {"id": item_id, "name": "Benih Sebar", "code": "ES"})

        response = self.client.delete(f"/api/catalog/seed-classes/{item_id}", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        response = self.client.get(f"/api/catalog/seed-classes/{item_id}", headers=self._auth())
        self.assertEqual(response.status_code, 404)

    def test_permissions_and_unknown_resource(self):
        response = self.client.get("/api/catalog/companies", headers=self._auth(self.guest_token))
        self.assertEqual(response.status_code, 403)

        response = self.client.post(
            "/api/catalog/companies",
            headers=self._auth(self.guest_token),
            json={"name": "PT Tanpa Izin"},
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.get("/api/catalog/fertilisers", headers=self._auth())
        self.assertEqual(response.status_code, 404)

        response = self.client.get("/api/catalog/companies")
        self.assertEqual(response.status_code, 401)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

import importlib
import os
import sys
import unittest


class RoleApiTestCase(unittest.TestCase):
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
        _, self.admin_role = self.app_module.seed_permissions()
        User = self.models.User
        admin = User(name="Admin", email="admin@example.com", role=self.admin_role)
        clerk = User(name="Clerk", email="clerk@example.com")
        for user in (admin, clerk):
            user.set_password("Password!1")
        self.db.session.add_all([admin, clerk])
        self.db.session.commit()
        self.clerk = clerk

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

    def test_permission_catalogue(self):
        response = self.client.get("/api/roles/permissions", headers=self._auth())
        self.assertEqual(response.status_code, 200)
        names = [item["name"] for item in response.get_json()]
        self.assertEqual(len(names), 13)
        self.assertIn("production.register.manage", names)
        self.assertIn("complaint.analytics", names)

        response = self.client.get("/api/roles/permissions", headers=self._auth(self.clerk_token))
        self.assertEqual(response.status_code, 403)

    def test_seed_permissions_is_idempotent(self):
        created, role = self.app_module.seed_permissions()
        self.assertEqual(created, 0)
        self.assertEqual(role.id, self.admin_role.id)
        self.assertEqual(self.models.Permission.query.count(), 13)

    def test_role_lifecycle(self):
        response = self.client.post(
            "/api/roles",
            headers=self._auth(),
            json={"name": " QA Staff ", "permissions": ["complaint.view", "complaint.respond"]},
        )
        self.assertEqual(response.status_code, 201)
        role = response.get_json()
        self.assertEqual(role["name"], "QA Staff")
        self.assertEqual(role["permissions"], ["complaint.respond", "complaint.view"])
        self.assertEqual(role["user_count"], 0)

        response = self.client.post("/api/roles", headers=self._auth(), json={"name": "qa staff"})
        self.assertEqual(response.status_code, 409)

        response = self.client.post(
            "/api/roles",
            headers=self._auth(),
            json={"name": "Bad", "permissions": ["complaint.delete_everything"]},
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.put(
            f"/api/roles/{role['id']}",
            headers=self._auth(),
            json={"permissions": ["complaint.view"]},
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["permissions"], ["complaint.view"])

        self.clerk.role_id = role["id"]
        self.db.session.commit()
        clerk_token = self._login("clerk@example.com")
        response = self.client.get("/api/auth/me", headers=self._auth(clerk_token))
        self.assertEqual(response.get_json()["permissions"], ["complaint.view"])
        self.assertEqual(response.get_json()["role"], "QA Staff")

        response = self.client.delete(f"/api/roles/{role['id']}", headers=self._auth())
        self.assertEqual(response.status_code, 409)

        self.clerk.role_id = None
        self.db.session.commit()
        self.db.session.expire_all()
        response = self.client.delete(f"/api/roles/{role['id']}", headers=self._auth())
        self.assertEqual(response.status_code, 200)

    def test_admin_role_is_protected(self):
        response = self.client.put(
            f"/api/roles/{self.admin_role.id}",
            headers=self._auth(),
            json={"name": "superuser"},
        )
        self.assertEqual(response.status_code, 409)

        response = self.client.delete(f"/api/roles/{self.admin_role.id}", headers=self._auth())
        self.assertEqual(response.status_code, 409)

    def test_register_user_requires_user_manager(self):
        payload = {
            "name": "New Agent",
            "email": "agent@example.com",
            "password": "Secret!23",
            "department": "customer_service",
            "complaint_permissions": {"can_respond_to_complaints": True},
        }
        response = self.client.post("/api/auth/register", headers=self._auth(self.clerk_token), json=payload)
        self.assertEqual(response.status_code, 403)

        response = self.client.post("/api/auth/register", headers=self._auth(), json=payload)
        self.assertEqual(response.status_code, 201)

        response = self.client.post("/api/auth/register", headers=self._auth(), json=payload)
        self.assertEqual(response.status_code, 400)

        token = self.client.post(
            "/api/auth/login",
            json={"email": "agent@example.com", "password": "Secret!23"},
        ).get_json()["access_token"]
        me = self.client.get("/api/auth/me", headers=self._auth(token)).get_json()
        self.assertEqual(me["permissions"], ["complaint.respond"])
        self.assertFalse(me["is_admin"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

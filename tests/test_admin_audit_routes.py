import unittest

from support import ApiTestCase, make_token

from models.admin_audit_log import AdminAuditLog

URL = "/api/admin/audit-log"


class AdminAuditRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.create_user("u-admin", "admin@example.com", is_admin=True)
        self.headers = self.headers_for(self.admin)

    def test_lists_entries_and_audits_the_read(self):
        self.client.post("/api/admin/feature-flags", json={"name": "beta-analytics"}, headers=self.headers)
        self.client.post("/api/admin/feature-flags", json={"name": "quiet-flag"}, headers=self.headers)

        res = self.client.get(URL, params={"action": "CREATE_FEATURE_FLAG"}, headers=self.headers)
        self.assertEqual(res.status_code, 200)
        entries = res.json()["entries"]
        self.assertEqual([e["details"]["name"] for e in entries], ["quiet-flag", "beta-analytics"])

        views = self.fresh().query(AdminAuditLog).filter_by(action="VIEW_AUDIT_LOG").all()
        self.assertEqual(len(views), 1)
        self.assertEqual(views[0].details["count"], 2)
        self.assertEqual(views[0].details["filters"]["action"], "CREATE_FEATURE_FLAG")

    def test_limit_is_bounded(self):
        for bad in ("0", "201", "ten"):
            res = self.client.get(URL, params={"limit": bad}, headers=self.headers)
            self.assertEqual(res.status_code, 400, bad)
        self.assertEqual(self.fresh().query(AdminAuditLog).count(), 0)

    def test_requires_admin(self):
        member = self.create_user("u-member", "member@example.com")
        res = self.client.get(URL, params={"limit": "ten"}, headers=self.headers_for(member))
        self.assertEqual(res.status_code, 403)


class ProfileAndHealthTests(ApiTestCase):
    def test_me_reports_admin_flag(self):
        admin = self.create_user("u-admin", "admin@example.com", is_admin=True)
        res = self.client.get("/api/user/me", headers=self.headers_for(admin))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["id"], "u-admin")
        self.assertTrue(res.json()["is_admin"])

    def test_first_login_creates_user(self):
        token = make_token("u-new", "new@example.com")
        res = self.client.get("/api/user/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["email"], "new@example.com")
        self.assertFalse(res.json()["is_admin"])

    def test_expired_token_is_401(self):
        token = make_token("u-new", "new@example.com", expires_in=-60)
        res = self.client.get("/api/user/me", headers={"Authorization": f"Bearer {token}"})
        self.assertEqual(res.status_code, 401)

    def test_health(self):
        self.assertEqual(self.client.get("/health").json(), {"status": "ok"})


if __name__ == "__main__":
    unittest.main()

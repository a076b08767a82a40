import unittest

from support import ApiTestCase

from models.admin_audit_log import AdminAuditLog
from models.artifact import Artifact
from models.onboarding_state import OnboardingState
from models.user import User

URL = "/api/onboarding"


class OnboardingRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.user = self.create_user("u-member", "member@example.com")
        self.headers = self.headers_for(self.user)

    def _post(self, path, json=None):
        res = self.client.post(f"{URL}{path}", json=json, headers=self.headers)
        self.assertEqual(res.status_code, 200, res.text)
        return res.json()

    def test_requires_session(self):
        self.assertEqual(self.client.get(URL).status_code, 401)

    def test_first_read_creates_default_state(self):
        res = self.client.get(URL, headers=self.headers)
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["current_screen"], 1)
        self.assertEqual(body["current_screen_name"], "welcome")
        self.assertEqual(body["completed_screens"], [])
        self.assertFalse(body["is_complete"])
        self.assertEqual([s["id"] for s in body["stages"]], ["challenges", "goals", "contacts", "profile"])
        self.assertEqual(self.fresh().query(OnboardingState).count(), 1)

    def test_next_then_read_is_not_stale(self):
        self.client.get(URL, headers=self.headers)
        self._post("/next")
        body = self.client.get(URL, headers=self.headers).json()
        self.assertEqual(body["current_screen"], 2)
        self.assertEqual(body["completed_screens"], [1])

    def test_previous(self):
        self._post("/next")
        self._post("/next")
        body = self._post("/previous")
        self.assertEqual(body["current_screen"], 2)
        self.assertEqual(body["completed_screens"], [1, 2])

    def test_navigate_reports_whether_it_applied(self):
        ok = self._post("/navigate", {"screen": "contacts"})
        self.assertTrue(ok["applied"])
        self.assertEqual(ok["state"]["current_screen"], 6)

        out_of_range = self._post("/navigate", {"screen": 13})
        self.assertFalse(out_of_range["applied"])
        self.assertEqual(out_of_range["state"]["current_screen"], 6)

    def test_complete_screen_validates_screen(self):
        res = self.client.post(f"{URL}/complete-screen", json={"screen": 0}, headers=self.headers)
        self.assertEqual(res.status_code, 400)

        body = self._post("/complete-screen", {"screen": 5})
        self.assertEqual(body["completed_screens"], [5])

    def test_complete_stamps_user_once(self):
        first = self._post("/complete")
        self.assertTrue(first["is_complete"])
        self.assertEqual(first["current_screen"], 12)
        stamped = self.fresh().get(User, "u-member").onboarding_completed_at
        self.assertIsNotNone(stamped)

        second = self._post("/complete")
        self.assertEqual(second["completed_at"], first["completed_at"])
        self.assertEqual(self.fresh().get(User, "u-member").onboarding_completed_at, stamped)

        me = self.client.get("/api/user/me", headers=self.headers).json()
        self.assertIsNotNone(me["onboarding_completed_at"])
        self.assertFalse(me["is_admin"])

    def test_walking_to_the_last_screen_stamps_user(self):
        for _ in range(11):
            self._post("/next")
        self.assertIsNone(self.fresh().get(User, "u-member").onboarding_completed_at)

        body = self._post("/next")
        self.assertTrue(body["is_complete"])
        me = self.client.get("/api/user/me", headers=self.headers).json()
        self.assertIsNotNone(me["onboarding_completed_at"])

    def test_completing_terminal_screen_stamps_user(self):
        body = self._post("/complete-screen", {"screen": 12})
        self.assertIn(12, body["completed_screens"])
        self.assertIsNotNone(self.fresh().get(User, "u-member").onboarding_completed_at)

    def test_boolean_screen_is_not_a_screen_number(self):
        self._post("/next")
        moved = self._post("/navigate", {"screen": True})
        self.assertFalse(moved["applied"])
        self.assertEqual(moved["state"]["current_screen"], 2)

        res = self.client.post(f"{URL}/complete-screen", json={"screen": True}, headers=self.headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(self.client.get(URL, headers=self.headers).json()["completed_screens"], [1])

    def test_patch_merges_auxiliary_fields(self):
        res = self.client.patch(
            URL,
            json={"goal_contact_urls": [" https://linkedin.com/in/a ", ""], "linkedin_connected": True},
            headers=self.headers,
        )
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["goal_contact_urls"], ["https://linkedin.com/in/a"])
        self.assertTrue(body["linkedin_connected"])
        self.assertFalse(body["gmail_connected"])

    def test_patch_rejects_unknown_fields(self):
        res = self.client.patch(URL, json={"current_screen": 9}, headers=self.headers)
        self.assertEqual(res.status_code, 400)
        self.assertEqual(self.client.get(URL, headers=self.headers).json()["current_screen"], 1)

    def test_restart_clears_progress_and_voice_memos(self):
        memo = Artifact(user_id="u-member", type="voice_memo", content="")
        self.db.add(memo)
        self.db.commit()
        self.client.patch(URL, json={"challenge_voice_memo_id": memo.id}, headers=self.headers)
        self._post("/complete")

        body = self._post("/restart")
        self.assertEqual(body["current_screen"], 1)
        self.assertEqual(body["completed_screens"], [])
        self.assertIsNone(body["challenge_voice_memo_id"])
        db = self.fresh()
        self.assertEqual(db.query(Artifact).count(), 0)
        self.assertIsNone(db.get(User, "u-member").onboarding_completed_at)


class AdminOnboardingResetTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.create_user("u-admin", "admin@example.com", is_admin=True)
        self.member = self.create_user("u-member", "member@example.com")

    def test_reset_is_audited(self):
        member_headers = self.headers_for(self.member)
        self.client.post(f"{URL}/next", headers=member_headers)
        self.client.post(f"{URL}/next", headers=member_headers)
        self.assertEqual(self.client.get(URL, headers=member_headers).json()["current_screen"], 3)

        res = self.client.post("/api/admin/onboarding/u-member/reset", headers=self.headers_for(self.admin))
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json()["state"]["current_screen"], 1)

        entry = self.fresh().query(AdminAuditLog).one()
        self.assertEqual(entry.action, "RESET_ONBOARDING")
        self.assertEqual(entry.resource_type, "onboarding_state")
        self.assertEqual(
            entry.details,
            {"user_id": "u-member", "previous_screen": 3, "completed_screens": [1, 2]},
        )

        # the member's cached view was invalidated by the reset
        self.assertEqual(self.client.get(URL, headers=member_headers).json()["current_screen"], 1)

    def test_reset_unknown_user_is_404(self):
        res = self.client.post("/api/admin/onboarding/ghost/reset", headers=self.headers_for(self.admin))
        self.assertEqual(res.status_code, 404)
        self.assertEqual(self.fresh().query(AdminAuditLog).count(), 0)

    def test_reset_requires_admin(self):
        res = self.client.post("/api/admin/onboarding/u-member/reset", headers=self.headers_for(self.member))
        self.assertEqual(res.status_code, 403)


if __name__ == "__main__":
    unittest.main()

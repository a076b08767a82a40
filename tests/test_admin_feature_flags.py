import unittest
from unittest.mock import patch

from support import ApiTestCase

from models.admin_audit_log import AdminAuditLog
from models.feature_flag import FeatureFlag, UserFeatureOverride
from services.audit_logger import AuditLogError
from services.feature_flag_service import DuplicateFlagError, create_flag
from services.flag_resolver import resolve

FLAGS_URL = "/api/admin/feature-flags"
OVERRIDES_URL = "/api/admin/user-feature-overrides"


class AdminFeatureFlagRoutesTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.admin = self.create_user("u-admin", "admin@example.com", is_admin=True)
        self.member = self.create_user("u-member", "member@example.com")
        self.admin_headers = self.headers_for(self.admin)

    def _audit(self, action=None):
        query = self.fresh().query(AdminAuditLog)
        if action:
            query = query.filter(AdminAuditLog.action == action)
        return query.all()

    def _create(self, name="beta-analytics", **extra):
        return self.client.post(FLAGS_URL, json={"name": name, **extra}, headers=self.admin_headers)

    # ── guard ────────────────────────────────────────────────────

    def test_anonymous_caller_gets_401_and_nothing_changes(self):
        res = self.client.post(FLAGS_URL, json={"name": "beta-analytics"})
        self.assertEqual(res.status_code, 401)
        self.assertEqual(res.json(), {"error": "Authentication required"})
        self.assertEqual(self.fresh().query(FeatureFlag).count(), 0)
        self.assertEqual(self._audit(), [])

    def test_non_admin_gets_403_before_body_validation(self):
        res = self.client.post(FLAGS_URL, json={"name": "Bad Name!"}, headers=self.headers_for(self.member))
        self.assertEqual(res.status_code, 403)
        self.assertEqual(res.json(), {"error": "Admin access required"})
        self.assertEqual(self.fresh().query(FeatureFlag).count(), 0)
        self.assertEqual(self._audit(), [])

    def test_invalid_token_is_401(self):
        res = self.client.get(FLAGS_URL, headers={"Authorization": "Bearer not-a-jwt"})
        self.assertEqual(res.status_code, 401)

    # ── create / validate ────────────────────────────────────────

    def test_create_rejects_uppercase_and_symbols(self):
        res = self._create("New_Flag!")
        self.assertEqual(res.status_code, 400)
        self.assertIn("lowercase letters", res.json()["error"])
        self.assertEqual(self.fresh().query(FeatureFlag).count(), 0)
        self.assertEqual(self._audit(), [])

    def test_create_accepts_valid_name_and_audits_once(self):
        res = self._create("new-flag_1", description="  Try it  ")
        self.assertEqual(res.status_code, 201)
        flag = res.json()["flag"]
        self.assertEqual(flag["name"], "new-flag_1")
        self.assertEqual(flag["description"], "Try it")
        self.assertFalse(flag["enabled_globally"])

        rows = self._audit()
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].action, "CREATE_FEATURE_FLAG")
        self.assertEqual(rows[0].resource_id, flag["id"])
        self.assertEqual(rows[0].admin_user_id, "u-admin")
        self.assertEqual(
            rows[0].details,
            {"name": "new-flag_1", "description": "Try it", "enabled_globally": False},
        )

    def test_duplicate_name_is_409(self):
        self.assertEqual(self._create("beta-analytics").status_code, 201)
        res = self._create("beta-analytics")
        self.assertEqual(res.status_code, 409)
        self.assertEqual(self.fresh().query(FeatureFlag).count(), 1)
        self.assertEqual(len(self._audit("CREATE_FEATURE_FLAG")), 1)

    def test_malformed_json_is_400(self):
        res = self.client.post(
            FLAGS_URL,
            content=b"{not json",
            headers={**self.admin_headers, "Content-Type": "application/json"},
        )
        self.assertEqual(res.status_code, 400)
        self.assertEqual(res.json()["error"], "Request body must be valid JSON")

    # ── update ───────────────────────────────────────────────────

    def test_update_applies_same_name_rule(self):
        flag_id = self._create("beta-analytics").json()["flag"]["id"]

        bad = self.client.put(f"{FLAGS_URL}/{flag_id}", json={"name": "New_Flag!"}, headers=self.admin_headers)
        self.assertEqual(bad.status_code, 400)
        self.assertEqual(self.fresh().get(FeatureFlag, flag_id).name, "beta-analytics")

        good = self.client.put(f"{FLAGS_URL}/{flag_id}", json={"name": "new-flag_1"}, headers=self.admin_headers)
        self.assertEqual(good.status_code, 200)
        self.assertEqual(good.json()["flag"]["name"], "new-flag_1")

        rows = self._audit("UPDATE_FEATURE_FLAG")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].details["before"], {"name": "beta-analytics"})
        self.assertEqual(rows[0].details["after"], {"name": "new-flag_1"})

    def test_update_to_taken_name_is_409(self):
        self._create("first")
        second_id = self._create("second").json()["flag"]["id"]
        res = self.client.put(f"{FLAGS_URL}/{second_id}", json={"name": "first"}, headers=self.admin_headers)
        self.assertEqual(res.status_code, 409)
        self.assertEqual(self._audit("UPDATE_FEATURE_FLAG"), [])

    def test_unknown_flag_is_404(self):
        res = self.client.get(f"{FLAGS_URL}/missing-id", headers=self.admin_headers)
        self.assertEqual(res.status_code, 404)
        self.assertEqual(res.json(), {"error": "Feature flag not found"})

    # ── scenarios ────────────────────────────────────────────────

    def test_override_disables_flag_that_is_on_globally(self):
        created = self._create("beta-analytics", enabled_globally=False)
        self.assertEqual(created.status_code, 201)
        flag_id = created.json()["flag"]["id"]

        toggled = self.client.post(f"{FLAGS_URL}/{flag_id}/toggle", headers=self.admin_headers)
        self.assertEqual(toggled.status_code, 200)
        self.assertTrue(toggled.json()["flag"]["enabled_globally"])
        self.assertEqual(self._audit("TOGGLE_FEATURE_FLAG")[0].details, {"name": "beta-analytics", "from": False, "to": True})

        override = self.client.post(
            OVERRIDES_URL,
            json={"user_id": "u-member", "feature_flag_id": flag_id, "enabled": False},
            headers=self.admin_headers,
        )
        self.assertEqual(override.status_code, 201)

        self.assertFalse(resolve(self.fresh(), "beta-analytics", "u-member"))
        self.assertTrue(resolve(self.db, "beta-analytics", "u-admin"))

        res = self.client.get(
            f"{FLAGS_URL}/resolve",
            params={"name": "beta-analytics", "user_id": "u-member"},
            headers=self.admin_headers,
        )
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"name": "beta-analytics", "user_id": "u-member", "enabled": False})

        mine = self.client.get("/api/feature-flags/beta-analytics", headers=self.headers_for(self.member))
        self.assertEqual(mine.json(), {"name": "beta-analytics", "enabled": False})

    def test_delete_cascades_to_overrides(self):
        flag_id = self._create("beta-analytics", enabled_globally=True).json()["flag"]["id"]
        other = self.create_user("u-other", "other@example.com")
        for user_id in ("u-member", other.id):
            res = self.client.post(
                OVERRIDES_URL,
                json={"user_id": user_id, "feature_flag_id": flag_id, "enabled": True},
                headers=self.admin_headers,
            )
            self.assertEqual(res.status_code, 201)

        res = self.client.delete(f"{FLAGS_URL}/{flag_id}", headers=self.admin_headers)
        self.assertEqual(res.status_code, 200)
        self.assertEqual(res.json(), {"message": "Feature flag deleted successfully"})

        db = self.fresh()
        self.assertIsNone(db.get(FeatureFlag, flag_id))
        self.assertEqual(db.query(UserFeatureOverride).count(), 0)
        self.assertFalse(resolve(db, "beta-analytics", "u-member"))
        self.assertFalse(resolve(db, "beta-analytics", "u-other"))

        rows = self._audit("DELETE_FEATURE_FLAG")
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0].details["overrides_deleted"], 2)

    def test_list_reports_override_counts(self):
        flag_id = self._create("beta-analytics").json()["flag"]["id"]
        self._create("quiet-flag")
        self.client.post(
            OVERRIDES_URL,
            json={"user_id": "u-member", "feature_flag_id": flag_id, "enabled": True},
            headers=self.admin_headers,
        )

        res = self.client.get(FLAGS_URL, headers=self.admin_headers)
        self.assertEqual(res.status_code, 200)
        counts = {f["name"]: f["override_count"] for f in res.json()["flags"]}
        self.assertEqual(counts, {"beta-analytics": 1, "quiet-flag": 0})
        self.assertEqual(self._audit("LIST_FEATURE_FLAGS")[0].details, {"count": 2})

    def test_resolve_requires_known_user_and_flag(self):
        self._create("beta-analytics")
        missing_flag = self.client.get(
            f"{FLAGS_URL}/resolve", params={"name": "nope", "user_id": "u-member"}, headers=self.admin_headers,
        )
        self.assertEqual(missing_flag.status_code, 404)

        missing_user = self.client.get(
            f"{FLAGS_URL}/resolve", params={"name": "beta-analytics", "user_id": "ghost"}, headers=self.admin_headers,
        )
        self.assertEqual(missing_user.status_code, 404)

        no_params = self.client.get(f"{FLAGS_URL}/resolve", headers=self.admin_headers)
        self.assertEqual(no_params.status_code, 400)

    def test_user_flags_for_admin(self):
        self._create("beta-analytics", enabled_globally=True)
        res = self.client.get("/api/admin/users/u-member/feature-flags", headers=self.admin_headers)
        self.assertEqual(res.status_code, 200)
        body = res.json()
        self.assertEqual(body["user_id"], "u-member")
        self.assertEqual([f["name"] for f in body["flags"]], ["beta-analytics"])
        self.assertTrue(body["flags"][0]["user_enabled"])

    # ── audit failure ────────────────────────────────────────────

    def test_audit_failure_rolls_back_the_change(self):
        with patch(
            "routers.admin_feature_flag_routes.log_admin_action",
            side_effect=AuditLogError("Failed to write admin audit log"),
        ):
            res = self._create("beta-analytics")

        self.assertEqual(res.status_code, 500)
        self.assertEqual(res.json(), {"error": "Internal server error"})
        self.assertEqual(self.fresh().query(FeatureFlag).count(), 0)
        self.assertEqual(self._audit(), [])


class FeatureFlagServiceTests(ApiTestCase):
    def test_unique_violation_leaves_rollback_to_caller(self):
        self.db.add(FeatureFlag(name="beta-analytics"))
        self.db.commit()

        # a concurrent insert slips past the name check and fails at flush
        with patch("services.feature_flag_service._name_taken", return_value=False), \
                patch.object(self.db, "rollback") as rollback:
            with self.assertRaises(DuplicateFlagError):
                create_flag(self.db, name="beta-analytics")
        rollback.assert_not_called()

        self.db.rollback()
        self.assertEqual(self.db.query(FeatureFlag).count(), 1)


if __name__ == "__main__":
    unittest.main()

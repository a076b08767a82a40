import unittest
from unittest.mock import MagicMock

from support import ApiTestCase

from sqlalchemy.exc import OperationalError
from starlette.requests import Request

from models.admin_audit_log import AdminAuditLog
from models.feature_flag import FeatureFlag
from services.audit_logger import (
    AuditLogError,
    admin_transaction,
    build_details,
    list_audit_entries,
    log_admin_action,
    request_context,
)
from utils.errors import ApiError, NotFound


def _request(headers=None, client=("10.0.0.9", 4321)):
    scope = {
        "type": "http",
        "method": "POST",
        "path": "/api/admin/feature-flags",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class BuildDetailsTests(unittest.TestCase):
    def test_toggle_details_use_from_key(self):
        details = build_details("TOGGLE_FEATURE_FLAG", {"name": "beta", "from": False, "to": True})
        self.assertEqual(details, {"name": "beta", "from": False, "to": True})

    def test_unknown_keys_are_rejected(self):
        with self.assertRaises(AuditLogError):
            build_details("CREATE_FEATURE_FLAG", {"name": "beta", "enabled_globally": True, "secret": "x"})

    def test_missing_required_keys_are_rejected(self):
        with self.assertRaises(AuditLogError):
            build_details("DELETE_USER_OVERRIDE", {"user_id": "u1"})

    def test_unknown_action_is_rejected(self):
        with self.assertRaises(AuditLogError):
            build_details("DROP_DATABASE", {})


class RequestContextTests(unittest.TestCase):
    def test_first_forwarded_hop_wins(self):
        ip, _ = request_context(_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "198.51.100.2"}))
        self.assertEqual(ip, "203.0.113.7")

    def test_falls_back_to_socket_peer(self):
        ip, ua = request_context(_request())
        self.assertEqual(ip, "10.0.0.9")
        self.assertIsNone(ua)

    def test_user_agent_is_truncated(self):
        _, ua = request_context(_request({"User-Agent": "x" * 2000}))
        self.assertEqual(len(ua), 512)

    def test_no_request(self):
        self.assertEqual(request_context(None), (None, None))


class AuditPersistenceTests(ApiTestCase):
    def test_entry_commits_with_the_change(self):
        with admin_transaction(self.db, "CREATE_FEATURE_FLAG"):
            flag = FeatureFlag(name="beta", enabled_globally=False)
            self.db.add(flag)
            self.db.flush()
            log_admin_action(
                self.db, "u-admin", "CREATE_FEATURE_FLAG", "feature_flags",
                resource_id=flag.id,
                details={"name": "beta", "enabled_globally": False},
                request=_request({"User-Agent": "tests"}),
            )

        db = self.fresh()
        self.assertEqual(db.query(FeatureFlag).count(), 1)
        entry = db.query(AdminAuditLog).one()
        self.assertEqual(entry.user_agent, "tests")
        self.assertEqual(entry.details, {"name": "beta", "description": None, "enabled_globally": False})

    def test_invalid_details_roll_back_the_change(self):
        with self.assertRaises(ApiError) as ctx:
            with admin_transaction(self.db, "CREATE_FEATURE_FLAG"):
                self.db.add(FeatureFlag(name="beta", enabled_globally=False))
                self.db.flush()
                log_admin_action(self.db, "u-admin", "CREATE_FEATURE_FLAG", "feature_flags", details={})

        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.error, "Internal server error")
        db = self.fresh()
        self.assertEqual(db.query(FeatureFlag).count(), 0)
        self.assertEqual(db.query(AdminAuditLog).count(), 0)

    def test_api_errors_pass_through_unchanged(self):
        with self.assertRaises(NotFound):
            with admin_transaction(self.db, "VIEW_FEATURE_FLAG"):
                raise NotFound("Feature flag not found")

    def test_flush_failure_becomes_audit_error(self):
        db = MagicMock()
        db.flush.side_effect = OperationalError("INSERT", {}, Exception("disk full"))
        with self.assertRaises(AuditLogError):
            log_admin_action(db, "u-admin", "LIST_FEATURE_FLAGS", "feature_flags", details={"count": 0})

    def test_entries_are_newest_first_and_filterable(self):
        for count in range(3):
            log_admin_action(self.db, "u-admin", "LIST_FEATURE_FLAGS", "feature_flags", details={"count": count})
        log_admin_action(self.db, "u-other", "LIST_FEATURE_FLAGS", "feature_flags", details={"count": 9})
        self.db.commit()

        entries = list_audit_entries(self.db, admin_user_id="u-admin", limit=2)
        self.assertEqual([e.details["count"] for e in entries], [2, 1])


if __name__ == "__main__":
    unittest.main()

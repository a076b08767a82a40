import unittest

from support import ApiTestCase

from models.feature_flag import FeatureFlag, UserFeatureOverride
from services.flag_resolver import FlagNotFoundError, effective_value, resolve, resolve_all


class EffectiveValueTests(unittest.TestCase):
    def test_override_wins_over_global(self):
        self.assertTrue(effective_value(False, True))
        self.assertFalse(effective_value(True, False))

    def test_global_used_without_override(self):
        self.assertTrue(effective_value(True, None))
        self.assertFalse(effective_value(False, None))


class ResolveTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.alice = self.create_user("u-alice", "alice@example.com")
        self.bob = self.create_user("u-bob", "bob@example.com")
        self.flag = FeatureFlag(name="beta-analytics", enabled_globally=False)
        self.db.add(self.flag)
        self.db.commit()

    def _override(self, user_id: str, enabled: bool):
        self.db.add(UserFeatureOverride(user_id=user_id, feature_flag_id=self.flag.id, enabled=enabled))
        self.db.commit()

    def test_missing_flag_fails_closed(self):
        self.assertFalse(resolve(self.db, "does-not-exist", "u-alice"))

    def test_missing_flag_raises_when_strict(self):
        with self.assertRaises(FlagNotFoundError):
            resolve(self.db, "does-not-exist", "u-alice", strict=True)

    def test_override_only_affects_its_user(self):
        self._override("u-alice", True)
        self.assertTrue(resolve(self.db, "beta-analytics", "u-alice"))
        self.assertFalse(resolve(self.db, "beta-analytics", "u-bob"))

    def test_disabled_override_beats_enabled_global(self):
        self.flag.enabled_globally = True
        self.db.commit()
        self._override("u-alice", False)

        self.assertFalse(resolve(self.db, "beta-analytics", "u-alice"))
        self.assertTrue(resolve(self.db, "beta-analytics", "u-bob"))

    def test_resolve_all_is_sorted_and_marks_overrides(self):
        self.db.add(FeatureFlag(name="a-first", enabled_globally=True))
        self.db.commit()
        self._override("u-alice", True)

        flags = resolve_all(self.db, "u-alice")
        self.assertEqual([f.name for f in flags], ["a-first", "beta-analytics"])

        by_name = {f.name: f for f in flags}
        self.assertFalse(by_name["a-first"].has_override)
        self.assertTrue(by_name["a-first"].user_enabled)
        self.assertTrue(by_name["beta-analytics"].has_override)
        self.assertTrue(by_name["beta-analytics"].user_enabled)
        self.assertFalse(by_name["beta-analytics"].enabled_globally)


if __name__ == "__main__":
    unittest.main()

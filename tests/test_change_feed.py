import asyncio
import unittest
from unittest.mock import patch

from sqlalchemy.exc import OperationalError
from support import ApiTestCase

from models.feature_flag import FeatureFlag, UserFeatureOverride
from routers.realtime_routes import change_stream
from services.sync.change_feed import ChangeEvent, ChangeFeed, publish_change
from services.sync.state_cache import user_state_cache


class ChangeFeedTests(unittest.TestCase):
    def setUp(self):
        self.feed = ChangeFeed()
        self.seen = []

    def test_user_events_reach_only_that_user(self):
        self.feed.subscribe("u1", self.seen.append)
        other = []
        self.feed.subscribe("u2", other.append)

        delivered = self.feed.publish(ChangeEvent(table="onboarding_state", action="UPDATE", user_id="u1"))
        self.assertEqual(delivered, 1)
        self.assertEqual(len(self.seen), 1)
        self.assertEqual(other, [])

    def test_broadcast_reaches_everyone(self):
        self.feed.subscribe("u1", self.seen.append)
        self.feed.subscribe("u2", self.seen.append)
        everything = []
        self.feed.subscribe_all(everything.append)

        self.feed.publish(ChangeEvent(table="feature_flags", action="UPDATE"))
        self.assertEqual(len(self.seen), 2)
        self.assertEqual(len(everything), 1)

    def test_closed_subscription_stops_delivery(self):
        with self.feed.subscribe("u1", self.seen.append):
            self.assertEqual(self.feed.subscriber_count("u1"), 1)
        self.assertEqual(self.feed.subscriber_count("u1"), 0)
        self.feed.publish(ChangeEvent(table="feature_flags", action="UPDATE", user_id="u1"))
        self.assertEqual(self.seen, [])

    def test_failing_callback_does_not_block_others(self):
        def boom(event):
            raise RuntimeError("listener broke")

        self.feed.subscribe("u1", boom)
        self.feed.subscribe("u1", self.seen.append)
        with self.assertLogs("services.sync.change_feed", level="ERROR"):
            delivered = self.feed.publish(ChangeEvent(table="feature_flags", action="UPDATE", user_id="u1"))
        self.assertEqual(delivered, 1)
        self.assertEqual(len(self.seen), 1)

    def test_subscribe_requires_user_id(self):
        with self.assertRaises(ValueError):
            self.feed.subscribe("", self.seen.append)


class StateCacheInvalidationTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        self.create_user("u1", "one@example.com")
        self.flag = FeatureFlag(name="beta-analytics", enabled_globally=False)
        self.db.add(self.flag)
        self.db.commit()

    def test_flag_change_invalidates_cached_value(self):
        self.assertFalse(user_state_cache.get_flag(self.db, "u1", "beta-analytics"))

        # direct write without an event: the cached answer stands
        self.flag.enabled_globally = True
        self.db.commit()
        self.assertFalse(user_state_cache.get_flag(self.db, "u1", "beta-analytics"))

        publish_change("feature_flags", "UPDATE", row_id=self.flag.id)
        self.assertTrue(user_state_cache.get_flag(self.fresh(), "u1", "beta-analytics"))

    def test_override_change_invalidates_only_that_user(self):
        self.create_user("u2", "two@example.com")
        self.assertEqual(user_state_cache.get_all_flags(self.db, "u1")[0]["user_enabled"], False)
        self.assertEqual(user_state_cache.get_all_flags(self.db, "u2")[0]["user_enabled"], False)

        self.db.add(UserFeatureOverride(user_id="u1", feature_flag_id=self.flag.id, enabled=True))
        self.db.add(UserFeatureOverride(user_id="u2", feature_flag_id=self.flag.id, enabled=True))
        self.db.commit()
        publish_change("user_feature_overrides", "INSERT", user_id="u1")

        db = self.fresh()
        self.assertTrue(user_state_cache.get_all_flags(db, "u1")[0]["user_enabled"])
        self.assertFalse(user_state_cache.get_all_flags(db, "u2")[0]["user_enabled"])

    def test_failed_lookup_is_not_cached(self):
        self.flag.enabled_globally = True
        self.db.commit()

        outage = OperationalError("SELECT", {}, Exception("connection lost"))
        with patch("services.flag_resolver._override_for", side_effect=outage):
            with self.assertLogs("services.sync.state_cache", level="ERROR"):
                self.assertFalse(user_state_cache.get_flag(self.db, "u1", "beta-analytics"))

        # no event was published, so only a fresh lookup can produce this
        self.assertTrue(user_state_cache.get_flag(self.fresh(), "u1", "beta-analytics"))


class ChangeStreamTests(unittest.TestCase):
    def test_stream_delivers_user_events_and_unsubscribes(self):
        feed = ChangeFeed()

        async def _run():
            stream = change_stream("u1", feed=feed, heartbeat_sec=5)
            ready = await stream.__anext__()
            self.assertTrue(ready.startswith("event: ready\n"))
            self.assertEqual(feed.subscriber_count("u1"), 1)

            feed.publish(ChangeEvent(table="onboarding_state", action="UPDATE", user_id="u1", row_id="s1"))
            frame = await stream.__anext__()
            await stream.aclose()
            return frame

        frame = asyncio.run(_run())
        self.assertTrue(frame.startswith("event: change\n"))
        self.assertIn('"table":"onboarding_state"', frame)
        self.assertIn('"row_id":"s1"', frame)
        self.assertTrue(frame.endswith("\n\n"))
        self.assertEqual(feed.subscriber_count(), 0)

    def test_idle_stream_sends_heartbeat(self):
        feed = ChangeFeed()

        async def _run():
            stream = change_stream("u1", feed=feed, heartbeat_sec=0.01)
            await stream.__anext__()
            beat = await stream.__anext__()
            await stream.aclose()
            return beat

        self.assertEqual(asyncio.run(_run()), ": heartbeat\n\n")
        self.assertEqual(feed.subscriber_count(), 0)

    def test_stream_stops_when_client_disconnects(self):
        feed = ChangeFeed()

        async def _gone():
            return True

        async def _run():
            return [frame async for frame in change_stream("u1", feed=feed, is_disconnected=_gone)]

        frames = asyncio.run(_run())
        self.assertEqual(len(frames), 1)
        self.assertEqual(feed.subscriber_count(), 0)


if __name__ == "__main__":
    unittest.main()

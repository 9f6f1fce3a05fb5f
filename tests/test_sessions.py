import threading
import unittest
from datetime import timedelta
from unittest.mock import patch

from backend.ubaa.auth.exceptions import NoSession
from backend.ubaa.auth.sessions import SessionStore
from backend.ubaa.auth.tokens import TokenService
from backend.ubaa.models.Auth import UserData

from fakes import FakeClock, FakeProvider

PROFILE = UserData(name="Li", schoolid="24182104")


class SessionStoreTestCase(unittest.TestCase):

    def setUp(self):
        self.provider = FakeProvider()
        self.clock = FakeClock()
        self.store = SessionStore(
            TokenService("unit-test-secret"),
            ttl=timedelta(minutes=30),
            transport_factory=self.provider.new_transport,
            clock=self.clock,
        )

    def login(self, identity="u1"):
        return self.store.commit_with_token(self.store.prepare(identity), PROFILE)


class TestLifecycle(SessionStoreTestCase):

    def test_prepared_candidate_is_invisible(self):
        candidate = self.store.prepare("u1")
        self.assertIsNone(self.store.get("u1"))
        self.assertNotIn("u1", self.store)
        candidate.release()
        self.assertTrue(candidate.transport.closed)

    def test_commit_makes_session_visible(self):
        session = self.store.commit(self.store.prepare("u1"), PROFILE)
        self.assertIs(self.store.get("u1"), session)
        self.assertIs(self.store.require("u1"), session)
        self.assertEqual(len(self.store), 1)

    def test_require_raises_without_session(self):
        with self.assertRaises(NoSession):
            self.store.require("nobody")

    def test_commit_replaces_and_releases_previous(self):
        first, old_token = self.login()
        second, new_token = self.login()
        self.assertIs(self.store.get("u1"), second)
        self.assertTrue(first.transport.closed)
        self.assertFalse(second.transport.closed)
        self.assertIsNone(self.store.resolve_token(old_token))
        self.assertIs(self.store.resolve_token(new_token), second)

    def test_invalidate(self):
        session, token = self.login()
        self.assertTrue(self.store.invalidate("u1"))
        self.assertTrue(session.transport.closed)
        self.assertIsNone(self.store.get("u1"))
        self.assertIsNone(self.store.resolve_token(token))
        self.assertFalse(self.store.invalidate("u1"))

    def test_invalidate_expected_only_removes_that_session(self):
        stale, _ = self.login()
        fresh, _ = self.login()
        self.assertFalse(self.store.invalidate("u1", expected=stale))
        self.assertIs(self.store.get("u1"), fresh)
        self.assertTrue(self.store.invalidate("u1", expected=fresh))

    def test_invalidate_by_token(self):
        session, token = self.login()
        self.assertTrue(self.store.invalidate_by_token(token))
        self.assertTrue(session.transport.closed)
        self.assertFalse(self.store.invalidate_by_token(token))
        self.assertFalse(self.store.invalidate_by_token("garbage"))

    def test_invalidate_by_token_spares_a_replacement(self):
        old, token = self.login()
        replacement = {}
        invalidate = self.store.invalidate

        def replaced_meanwhile(identity, expected=None):
            # Another login for the same identity commits right before the removal
            replacement["session"], _ = self.login()
            return invalidate(identity, expected=expected)

        with patch.object(self.store, "invalidate", side_effect=replaced_meanwhile) as spy:
            self.assertFalse(self.store.invalidate_by_token(token))

        spy.assert_called_once_with("u1", expected=old)
        self.assertIs(self.store.get("u1"), replacement["session"])
        self.assertFalse(replacement["session"].transport.closed)
        self.assertTrue(old.transport.closed)

    def test_token_from_other_store_does_not_resolve(self):
        self.login()
        stray = TokenService("unit-test-secret").issue("u1", timedelta(minutes=30))
        self.assertIsNone(self.store.resolve_token(stray))

    def test_issue_token_for_live_session(self):
        session, first = self.login()
        second = self.store.issue_token("u1")
        self.assertNotEqual(first, second)
        self.assertIs(self.store.resolve_token(first), session)
        self.assertIs(self.store.resolve_token(second), session)

    def test_issue_token_without_session(self):
        with self.assertRaises(NoSession):
            self.store.issue_token("u1")

    def test_close_all(self):
        a, _ = self.login("a")
        b, _ = self.login("b")
        self.store.close_all()
        self.assertEqual(len(self.store), 0)
        self.assertTrue(a.transport.closed and b.transport.closed)


class TestExpiry(SessionStoreTestCase):

    def test_expired_session_is_evicted_on_access(self):
        session, token = self.login()
        self.clock.advance(minutes=30)
        self.assertIsNone(self.store.get("u1"))
        self.assertTrue(session.transport.closed)
        self.assertNotIn("u1", self.store)
        self.assertIsNone(self.store.resolve_token(token))

    def test_access_renews_sliding_window(self):
        session, token = self.login()
        self.clock.advance(minutes=20)
        self.assertIs(self.store.resolve_token(token), session)
        self.clock.advance(minutes=20)
        self.assertIs(self.store.get("u1"), session)
        self.assertEqual(session.last_renewed_at, self.clock.now)

    def test_sweep_expired(self):
        old, _ = self.login("old")
        self.clock.advance(minutes=25)
        young, _ = self.login("young")
        self.clock.advance(minutes=10)

        self.assertEqual(self.store.sweep_expired(), 1)
        self.assertTrue(old.transport.closed)
        self.assertNotIn("old", self.store)
        self.assertIn("young", self.store)
        self.assertEqual(self.store.sweep_expired(), 0)


class TestCaptchaHolds(SessionStoreTestCase):

    def hold(self, client_id="device-1"):
        candidate = self.store.prepare("")
        self.store.hold(client_id, candidate, "exec123", "<html></html>")
        return candidate

    def test_take_pending_hands_over_once(self):
        candidate = self.hold()

        self.assertIs(self.store.pending_transport("device-1"), candidate.transport)
        pending = self.store.take_pending("device-1", "u1")

        self.assertIs(pending.candidate, candidate)
        self.assertEqual(pending.candidate.identity, "u1")
        self.assertEqual(pending.execution, "exec123")
        self.assertIsNone(self.store.take_pending("device-1", "u1"))
        self.assertIsNone(self.store.pending_transport("device-1"))
        # A hold is not a session
        self.assertNotIn("u1", self.store)

    def test_new_hold_releases_the_previous_one(self):
        first = self.hold()
        second = self.hold()

        self.assertTrue(first.transport.closed)
        self.assertFalse(second.transport.closed)
        self.assertIs(self.store.take_pending("device-1", "u1").candidate, second)

    def test_expired_hold_is_released(self):
        candidate = self.hold()
        self.clock.advance(minutes=5)

        self.assertIsNone(self.store.pending_transport("device-1"))
        self.assertIsNone(self.store.take_pending("device-1", "u1"))
        self.assertTrue(candidate.transport.closed)

    def test_sweep_drops_expired_holds(self):
        old = self.hold("old")
        self.clock.advance(minutes=3)
        young = self.hold("young")
        self.clock.advance(minutes=3)

        self.store.sweep_expired()

        self.assertTrue(old.transport.closed)
        self.assertFalse(young.transport.closed)
        self.assertIsNotNone(self.store.pending_transport("young"))

    def test_close_all_releases_holds(self):
        candidate = self.hold()
        self.store.close_all()
        self.assertTrue(candidate.transport.closed)
        self.assertIsNone(self.store.pending_transport("device-1"))


class TestConcurrency(SessionStoreTestCase):

    def test_concurrent_commits_leave_one_session(self):
        workers = 8
        barrier = threading.Barrier(workers)
        candidates = [self.store.prepare("u1") for _ in range(workers)]

        def commit(candidate):
            barrier.wait()
            self.store.commit(candidate, PROFILE)

        threads = [threading.Thread(target=commit, args=(c,)) for c in candidates]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(self.store), 1)
        live = self.store.get("u1")
        self.assertFalse(live.transport.closed)
        self.assertEqual(len(self.provider.open_transports), 1)
        self.assertEqual(sum(1 for c in candidates if c.transport.closed), workers - 1)

    def test_unrelated_identities_do_not_interfere(self):
        identities = [f"user{i}" for i in range(20)]

        def commit(identity):
            self.store.commit(self.store.prepare(identity), PROFILE)

        threads = [threading.Thread(target=commit, args=(i,)) for i in identities]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(len(self.store), 20)
        for identity in identities:
            self.assertIsNotNone(self.store.get(identity))


if __name__ == "__main__":
    unittest.main()

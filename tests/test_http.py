import asyncio
import unittest
from unittest.mock import MagicMock, patch

import requests

from backend.ubaa.core.http import Transport
from backend.ubaa.main import sweep_sessions


class TestTransport(unittest.TestCase):

    @patch.object(requests.Session, "request")
    def test_default_timeout_is_applied(self, mock_request):
        transport = Transport(connect_timeout=3, read_timeout=7)

        transport.get("https://sso.buaa.edu.cn/login")
        transport.get("https://sso.buaa.edu.cn/login", timeout=1)

        self.assertEqual(mock_request.call_args_list[0].kwargs["timeout"], (3, 7))
        self.assertEqual(mock_request.call_args_list[1].kwargs["timeout"], 1)

    def test_cookie_jars_are_private(self):
        a, b = Transport(), Transport()
        a.cookies.set("CASTGC", "TGT-1", domain="sso.buaa.edu.cn")
        self.assertEqual(len(b.cookies), 0)

    def test_close(self):
        transport = Transport()
        self.assertFalse(transport.closed)
        transport.close()
        self.assertTrue(transport.closed)


class TestSweeper(unittest.TestCase):

    def test_sweeper_keeps_running_after_failure(self):
        store = MagicMock()

        def sweep():
            if store.sweep_expired.call_count == 1:
                raise RuntimeError("boom")
            return 0

        store.sweep_expired.side_effect = sweep

        async def run():
            task = asyncio.create_task(sweep_sessions(store, 0.01))
            await asyncio.sleep(0.1)
            task.cancel()
            with self.assertRaises(asyncio.CancelledError):
                await task

        asyncio.run(run())
        self.assertGreaterEqual(store.sweep_expired.call_count, 2)


if __name__ == "__main__":
    unittest.main()

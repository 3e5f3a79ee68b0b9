import asyncio
import unittest

from services.api.app.relay import RelayHub
from services.api.app.tests.fakes import FakeClock, FakeWebSocket

HOUR = 60 * 60


class SessionReaperTests(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self) -> None:
        self.clock = FakeClock()
        self.hub = RelayHub(clock=self.clock, retention=2 * HOUR)

    async def asyncTearDown(self) -> None:
        await self.hub.stop()

    async def _abandoned_session(self) -> str:
        host = self.hub.connect(FakeWebSocket())
        session_id = self.hub.store.create_session(host)
        self.clock.advance(10 * 60)
        await self.hub.disconnect(host)
        return session_id

    async def test_session_survives_within_retention(self) -> None:
        session_id = await self._abandoned_session()
        self.clock.advance(HOUR)

        self.assertEqual(self.hub.reaper.sweep(), [])
        self.assertIsNotNone(self.hub.store.get(session_id))

    async def test_session_purged_after_retention(self) -> None:
        session_id = await self._abandoned_session()
        self.clock.advance(2 * HOUR + 60)

        self.assertEqual(self.hub.reaper.sweep(), [session_id])
        self.assertIsNone(self.hub.store.get(session_id))

    async def test_open_host_is_never_reaped(self) -> None:
        host = self.hub.connect(FakeWebSocket())
        session_id = self.hub.store.create_session(host)
        self.clock.advance(10 * HOUR)

        self.assertEqual(self.hub.reaper.sweep(), [])
        self.assertIsNotNone(self.hub.store.get(session_id))

    async def test_closed_but_registered_host_counts_as_gone(self) -> None:
        ws = FakeWebSocket()
        host = self.hub.connect(ws)
        session_id = self.hub.store.create_session(host)
        ws.drop()
        self.clock.advance(3 * HOUR)

        self.assertEqual(self.hub.reaper.sweep(), [session_id])

    async def test_scheduled_sweep_purges_abandoned_session(self) -> None:
        self.hub = RelayHub(clock=self.clock, retention=2 * HOUR, reaper_interval=0.01)
        session_id = await self._abandoned_session()
        self.clock.advance(3 * HOUR)

        await self.hub.start()
        deadline = asyncio.get_running_loop().time() + 1.0
        while self.hub.store.get(session_id) is not None:
            if asyncio.get_running_loop().time() > deadline:
                self.fail("reaper loop never swept the session")
            await asyncio.sleep(0.005)

        self.assertTrue(self.hub.reaper.running)

    async def test_start_and_stop(self) -> None:
        await self.hub.start()
        self.assertTrue(self.hub.reaper.running)
        await self.hub.stop()
        self.assertFalse(self.hub.reaper.running)


if __name__ == "__main__":
    unittest.main()

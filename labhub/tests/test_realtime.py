import asyncio
import unittest

from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from labhub.app import create_app
from labhub.auth import seed_roster
from labhub.db import InMemoryDbClient
from labhub.dependencies import get_db_client, get_message_store
from labhub.realtime import _stop_pump


class ChatSocketTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        db = get_db_client()
        if isinstance(db, InMemoryDbClient):
            db.reset()
            seed_roster(db)
        get_message_store().clear()

    def test_unknown_user_is_rejected(self):
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect("/api/ws/chat?user_id=404"):
                pass
        self.assertEqual(ctx.exception.code, 1008)

    def test_join_and_send(self):
        get_message_store().append("3", "general", "morning")
        with self.client.websocket_connect("/api/ws/chat?user_id=2") as ws:
            ws.send_json({"event": "join", "channel": "general"})
            history = ws.receive_json()
            self.assertEqual(history["event"], "history")
            self.assertEqual([m["content"] for m in history["messages"]], ["morning"])

            ws.send_json(
                {"event": "send", "channel": "general", "content": "Daily standup: all on track!"}
            )
            delivered = ws.receive_json()
            self.assertEqual(delivered["event"], "delivered")
            self.assertEqual(delivered["message"]["sender"]["name"], "Sarthak")
            self.assertEqual(delivered["message"]["channel"], "general")

        stored = get_message_store().list("general")
        self.assertEqual(stored[-1].content, "Daily standup: all on track!")

    def test_bad_frames_get_error_events(self):
        with self.client.websocket_connect("/api/ws/chat?user_id=1") as ws:
            ws.send_text("not json")
            self.assertEqual(ws.receive_json()["event"], "error")
            ws.send_json({"event": "join", "channel": "random"})
            error = ws.receive_json()
            self.assertEqual(error["event"], "error")
            self.assertIn("random", error["detail"])

    def test_binary_frame_gets_error_event(self):
        with self.client.websocket_connect("/api/ws/chat?user_id=1") as ws:
            ws.send_bytes(b"\x00\x01")
            self.assertEqual(ws.receive_json()["event"], "error")
            ws.send_json({"event": "join", "channel": "general"})
            self.assertEqual(ws.receive_json()["event"], "history")

    def test_rest_post_reaches_socket_subscribers(self):
        with self.client.websocket_connect("/api/ws/chat?user_id=3") as ws:
            ws.send_json({"event": "join", "channel": "imaging"})
            self.assertEqual(ws.receive_json()["messages"], [])

            response = self.client.post(
                "/api/chat",
                json={"senderId": "1", "content": "new scans", "channel": "imaging"},
            )
            self.assertEqual(response.status_code, 200)

            delivered = ws.receive_json()
            self.assertEqual(delivered["event"], "delivered")
            self.assertEqual(delivered["message"]["id"], response.json()["id"])


class StopPumpTests(unittest.TestCase):
    def test_running_pump_is_cancelled_and_awaited(self):
        async def scenario():
            pump = asyncio.create_task(asyncio.sleep(3600))
            await asyncio.sleep(0)
            await _stop_pump(pump, "session")
            return pump

        pump = asyncio.run(scenario())
        self.assertTrue(pump.cancelled())

    def test_failed_pump_error_is_retrieved_and_logged(self):
        async def broken():
            raise RuntimeError("socket closed")

        async def scenario():
            pump = asyncio.create_task(broken())
            await asyncio.sleep(0)
            await _stop_pump(pump, "session")
            return pump

        with self.assertLogs("labhub.realtime", level="DEBUG") as logs:
            pump = asyncio.run(scenario())
        self.assertTrue(pump.done())
        self.assertIn("ended with an error", logs.output[0])


if __name__ == "__main__":
    unittest.main()

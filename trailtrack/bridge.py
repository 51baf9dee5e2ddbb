"""WebSocket bridge: browser/phone clients feed fixes in and receive map updates."""

import json
import math
from typing import Callable, Optional

import websockets

from .config import CONFIG
from .errors import PositionError
from .gps import SubscriberSet
from .logger import Logger
from .models import Coords, Fix
from .timer import Clock


class WebSocketBridge(SubscriberSet):
    """Position source and map renderer over one WebSocket server.

    Inbound messages:
        {"type": "location", "data": {"lat", "lng", "accuracy"}}
        {"type": "error", "data": {"code", "message"}}
        {"type": "command", "data": "pause" | "resume" | "stop"}
    Outbound messages: "segment", "marker", "clear" and "log".
    """

    def __init__(self, clock: Clock, host: Optional[str] = None, port: Optional[int] = None,
                 on_command: Optional[Callable[[str], None]] = None,
                 logger: Optional[Logger] = None):
        super().__init__()
        self.clock = clock
        self.host = host or CONFIG["ws_host"]
        self.port = port if port is not None else CONFIG["ws_port"]
        self.on_command = on_command
        self.logger = logger or Logger(echo=False)
        self.connected_clients: set = set()
        self._server = None

    def is_available(self) -> bool:
        return self._server is not None

    async def start(self):
        """Start serving on the running event loop"""
        self._server = await websockets.serve(self._handler, self.host, self.port)
        self.logger.log("WebSocket bridge listening", {"host": self.host, "port": self.port})

    async def close(self):
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

    async def _handler(self, websocket):
        self.connected_clients.add(websocket)
        try:
            async for message in websocket:
                self.handle_message(message)
        finally:
            self.connected_clients.discard(websocket)

    def handle_message(self, message):
        try:
            data = json.loads(message)
        except json.JSONDecodeError:
            self.logger.log("Ignoring malformed message")
            return
        if not isinstance(data, dict):
            return

        msg_type = data.get("type")
        payload = data.get("data")
        if msg_type == "location":
            try:
                lat = float(payload["lat"])
                lng = float(payload["lng"] if "lng" in payload else payload["lon"])
                if not (math.isfinite(lat) and math.isfinite(lng)):
                    raise ValueError(f"non-finite coordinates {lat}, {lng}")
                accuracy = payload.get("accuracy")
                accuracy = float(accuracy) if accuracy is not None else math.inf
                if math.isnan(accuracy):
                    raise ValueError("accuracy is NaN")
                fix = Fix(lat=lat, lng=lng, accuracy=accuracy, timestamp=self.clock.now_ms())
            except (KeyError, TypeError, ValueError) as e:
                self.logger.log("Ignoring bad location", {"error": str(e)})
                return
            self.emit_fix(fix)
        elif msg_type == "error":
            payload = payload if isinstance(payload, dict) else {}
            self.emit_error(PositionError.from_code(
                str(payload.get("code", PositionError.UNKNOWN)),
                str(payload.get("message", "")),
            ))
        elif msg_type == "command":
            if self.on_command and isinstance(payload, str):
                self.on_command(payload)

    def _send_message(self, msg_type: str, data):
        """Send a message to all connected WebSocket clients"""
        if not self.connected_clients:
            return
        websockets.broadcast(self.connected_clients, json.dumps({"type": msg_type, "data": data}))

    def add_route_segment(self, prev: Coords, curr: Coords):
        self._send_message("segment", [prev.to_dict(), curr.to_dict()])

    def update_marker_position(self, coords: Coords):
        self._send_message("marker", coords.to_dict())

    def clear_route(self):
        self._send_message("clear", {})

    def send_log(self, message: str, data: Optional[dict] = None):
        self._send_message("log", {"message": message, "data": data})

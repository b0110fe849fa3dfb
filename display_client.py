import argparse
import asyncio
import logging
import os
import tempfile
from typing import Any, Dict, Optional
from urllib.parse import quote

import requests
import socketio

from event_bus import (
    LOAD,
    MUTE,
    NOTIFY_FULLSCREEN,
    NOTIFY_OVERLAY,
    PAUSE,
    PLAY,
    REFRESH,
    RESTART,
    STATUS_UPDATE,
    UNMUTE,
)
from mpv_player import BrightnessOverlay, MpvPlayer
from transition_engine import Overlay, TransitionEngine

logger = logging.getLogger(__name__)


class DisplayClient:
    """Connects one display to the server and feeds its events to the engine.

    Playback telemetry goes back over plain HTTP (POST /api/status) rather
    than the socket, so the event fan-out stays one way.
    """

    def __init__(
        self,
        server_url: str,
        players,
        overlay: Overlay,
        ready_timeout: Optional[float] = None,
        timeout: float = 5.0,
        sio: Optional[socketio.AsyncClient] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout
        self.engine = TransitionEngine(
            players,
            overlay,
            media_url=self.media_url,
            report=self.report_status,
            advance=self.request_next,
            ready_timeout=ready_timeout,
        )
        self.sio = sio if sio is not None else socketio.AsyncClient(reconnection=True)
        self._register_handlers()

    def media_url(self, file: str) -> str:
        return f"{self.server_url}/media/{quote(file)}"

    def _register_handlers(self) -> None:
        engine = self.engine
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on(PLAY, engine.play)
        self.sio.on(PAUSE, engine.pause)
        self.sio.on(RESTART, engine.restart)
        self.sio.on(MUTE, engine.mute)
        self.sio.on(UNMUTE, engine.unmute)
        self.sio.on(REFRESH, self.on_refresh)
        self.sio.on(LOAD, self.on_load)
        self.sio.on(STATUS_UPDATE, engine.apply_status)
        self.sio.on(NOTIFY_OVERLAY, self.on_notify_overlay)
        self.sio.on(NOTIFY_FULLSCREEN, self.on_notify_fullscreen)

    # --- Socket events ---
    async def on_connect(self):
        logger.info(f"Connected to {self.server_url}")
        await self.fetch_status()

    async def on_disconnect(self, *args):
        logger.warning("Disconnected from server")

    async def on_load(self, data):
        file = (data or {}).get("file")
        if file:
            self.engine.enqueue(file)

    async def on_refresh(self):
        logger.info("Refresh requested, resetting display")
        await self.engine.reset()
        await self.fetch_status()

    async def on_notify_overlay(self, data):
        message = (data or {}).get("message")
        if message:
            await self.engine.notify_overlay(message)

    async def on_notify_fullscreen(self, data):
        data = data or {}
        if data.get("message") and data.get("duration"):
            await self.engine.notify_fullscreen(data["message"], data["duration"])

    # --- HTTP ---
    async def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        def call():
            response = requests.request(method, f"{self.server_url}{path}", timeout=self.timeout, **kwargs)
            response.raise_for_status()
            return response

        return await asyncio.to_thread(call)

    async def fetch_status(self, apply: bool = True) -> Optional[Dict[str, Any]]:
        try:
            response = await self._request("GET", "/api/status")
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error fetching status: {e}")
            return None
        if apply:
            await self.engine.apply_status(data)
        return data

    async def report_status(self, updates: Dict[str, Any]) -> None:
        try:
            await self._request("POST", "/api/status", json=updates)
            logger.info(f"Server status updated: {updates}")
        except requests.exceptions.RequestException as e:
            logger.error(f"Error updating status: {e}")

    async def request_next(self, ended: Optional[str]) -> Optional[str]:
        try:
            response = await self._request("POST", "/api/next", json={"ended": ended})
            return response.json().get("file")
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Error fetching next video: {e}")
            return None

    async def run(self) -> None:
        await self.sio.connect(self.server_url)
        await self.sio.wait()


async def run_display(args) -> None:
    socket_dir = tempfile.gettempdir()
    players = [
        MpvPlayer(f"player-{i}", os.path.join(socket_dir, f"vidsync-mpv-{os.getpid()}-{i}"), fullscreen=not args.windowed)
        for i in (1, 2)
    ]
    for player in players:
        await player.start()
    await players[0].set_visible(True)
    await players[1].set_visible(False)

    client = DisplayClient(args.server, tuple(players), BrightnessOverlay(players), ready_timeout=args.ready_timeout)

    pending = set()

    def interaction():
        task = asyncio.get_running_loop().create_task(client.engine.notify_interaction())
        pending.add(task)
        task.add_done_callback(pending.discard)

    for player in players:
        player.on_interaction = interaction

    try:
        await client.run()
    finally:
        await client.sio.disconnect()
        for player in players:
            await player.stop()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Synchronized signage display")
    parser.add_argument("--server", default="http://localhost:3000", help="Control server URL")
    parser.add_argument("--ready-timeout", type=float, default=None, help="Give up on a load after N seconds")
    parser.add_argument("--windowed", action="store_true", help="Do not go fullscreen")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    asyncio.run(run_display(args))


if __name__ == "__main__":
    main()

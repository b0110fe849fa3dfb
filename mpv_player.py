"""mpv-backed players for a display.

Each player is a persistent mpv window driven over its JSON IPC socket, so
switching media never restarts the window.
"""
import asyncio
import json
import logging
import os
from typing import Any, Callable, Dict, List, Optional, Sequence

from transition_engine import MediaLoadError, Overlay, Player

logger = logging.getLogger(__name__)

SOCKET_WAIT_SECONDS = 5.0
COMMAND_TIMEOUT = 5.0
CACHE_POLL_INTERVAL = 0.1
INTERACTION_MESSAGE = "interaction"


class MpvError(Exception):
    pass


class MpvPlayer(Player):
    def __init__(self, name: str, socket_path: str, fullscreen: bool = True, extra_args: Sequence[str] = ()):
        super().__init__(name)
        self.socket_path = socket_path
        self.fullscreen = fullscreen
        self.extra_args = list(extra_args)
        self.on_interaction: Optional[Callable[[], None]] = None

        self.process: Optional[asyncio.subprocess.Process] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[int, asyncio.Future] = {}
        self._request_id = 0
        self._paused = True
        self._load_done: Optional[asyncio.Future] = None

    @property
    def paused(self) -> bool:
        return self._paused

    def _args(self) -> List[str]:
        args = [
            "mpv",
            "--idle=yes",  # Keep window open without media
            "--keep-open=yes",  # Hold the last frame so eof-reached fires
            "--force-window=yes",
            f"--input-ipc-server={self.socket_path}",
            "--hwdec=auto",
            "--no-terminal",
            "--no-input-default-bindings",
            "--no-osc",
            "--really-quiet",
            "--pause=yes",
            "--mute=yes",
        ]
        if self.fullscreen:
            args.append("--fullscreen")
        return args + self.extra_args

    async def start(self) -> None:
        if os.path.exists(self.socket_path):
            os.remove(self.socket_path)

        logger.info(f"Starting mpv for {self.name}")
        self.process = await asyncio.create_subprocess_exec(*self._args())

        deadline = asyncio.get_running_loop().time() + SOCKET_WAIT_SECONDS
        while True:
            try:
                self._reader, self._writer = await asyncio.open_unix_connection(self.socket_path)
                break
            except (FileNotFoundError, ConnectionRefusedError):
                if asyncio.get_running_loop().time() > deadline:
                    raise MpvError(f"mpv IPC socket {self.socket_path} never appeared")
                await asyncio.sleep(0.1)

        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())
        await self.command("observe_property", 1, "eof-reached")
        await self.command("observe_property", 2, "pause")
        for key in ("SPACE", "MBTN_LEFT"):
            try:
                await self.command("keybind", key, f"script-message {INTERACTION_MESSAGE}")
            except MpvError as e:
                # keybind needs mpv 0.37+
                logger.warning(f"Could not bind {key} on {self.name}: {e}")

    async def stop(self) -> None:
        if self._writer is not None:
            try:
                await self.command("quit")
            except (MpvError, ConnectionError, asyncio.TimeoutError):
                pass
            self._writer.close()
        if self._reader_task is not None:
            self._reader_task.cancel()
        if self.process is not None and self.process.returncode is None:
            self.process.terminate()
            await self.process.wait()

    # --- IPC ---
    async def command(self, *args: Any) -> Any:
        if self._writer is None:
            raise MpvError(f"{self.name} is not running")
        self._request_id += 1
        request_id = self._request_id
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future

        message = json.dumps({"command": list(args), "request_id": request_id}) + "\n"
        self._writer.write(message.encode("utf-8"))
        await self._writer.drain()
        try:
            return await asyncio.wait_for(future, COMMAND_TIMEOUT)
        finally:
            self._pending.pop(request_id, None)

    async def get_property(self, name: str) -> Any:
        return await self.command("get_property", name)

    async def set_property(self, name: str, value: Any) -> None:
        await self.command("set_property", name, value)

    async def _read_loop(self) -> None:
        while True:
            line = await self._reader.readline()
            if not line:
                logger.warning(f"mpv IPC closed for {self.name}")
                for future in self._pending.values():
                    if not future.done():
                        future.set_exception(MpvError("IPC connection closed"))
                self._fail_load("mpv exited")
                return
            try:
                message = json.loads(line)
            except ValueError:
                logger.debug(f"Unparseable mpv message: {line!r}")
                continue

            if "request_id" in message and message["request_id"] in self._pending:
                future = self._pending[message["request_id"]]
                if future.done():
                    continue
                if message.get("error") == "success":
                    future.set_result(message.get("data"))
                else:
                    future.set_exception(MpvError(message.get("error")))
            elif "event" in message:
                self._handle_event(message)

    def _handle_event(self, message: Dict[str, Any]) -> None:
        event = message["event"]
        if event == "file-loaded":
            if self._load_done is not None and not self._load_done.done():
                self._load_done.set_result(None)
        elif event == "end-file" and message.get("reason") == "error":
            self._fail_load(message.get("file_error", "unknown error"))
        elif event == "property-change":
            if message.get("name") == "eof-reached" and message.get("data") is True:
                self.ended()
            elif message.get("name") == "pause" and message.get("data") is not None:
                self._paused = bool(message["data"])
        elif event == "client-message" and message.get("args") == [INTERACTION_MESSAGE]:
            if self.on_interaction is not None:
                self.on_interaction()

    def _fail_load(self, reason: str) -> None:
        if self._load_done is not None and not self._load_done.done():
            self._load_done.set_exception(MediaLoadError(reason))

    # --- Player ---
    async def load(self, url: str) -> None:
        self._load_done = asyncio.get_running_loop().create_future()
        await self.set_property("pause", True)
        await self.command("loadfile", url, "replace")

    async def wait_ready(self) -> None:
        if self._load_done is None:
            raise MediaLoadError("nothing is loading")
        await self._load_done
        # Buffered enough to play through once the demuxer stops reading
        while True:
            try:
                if await self.get_property("demuxer-cache-idle"):
                    return
            except MpvError:
                return
            await asyncio.sleep(CACHE_POLL_INTERVAL)

    async def play(self) -> None:
        await self.set_property("pause", False)
        self._paused = False

    async def pause(self) -> None:
        await self.set_property("pause", True)
        self._paused = True

    async def seek_start(self) -> None:
        try:
            await self.command("seek", 0, "absolute")
        except MpvError:
            # Nothing loaded yet
            pass

    async def set_muted(self, muted: bool) -> None:
        await self.set_property("mute", muted)

    async def set_visible(self, visible: bool) -> None:
        await self.set_property("ontop", visible)

    async def show_text(self, text: str, duration: float) -> None:
        await self.command("show-text", text, int(duration * 1000))

    async def set_brightness(self, value: float) -> None:
        await self.set_property("brightness", int(round(value)))


def ease_out_quad(t: float) -> float:
    return 1 - (1 - t) * (1 - t)


def ease_in_quad(t: float) -> float:
    return t * t


class BrightnessOverlay(Overlay):
    """Fades to black by dimming every player, since mpv has no overlay layer."""

    def __init__(self, players: Sequence[MpvPlayer], steps_per_second: int = 30):
        self.players = list(players)
        self.steps_per_second = steps_per_second

    async def _apply(self, opacity: float) -> None:
        await asyncio.gather(*(player.set_brightness(-100 * opacity) for player in self.players))

    async def fade(self, start: float, end: float, duration: float) -> None:
        steps = max(1, int(duration * self.steps_per_second))
        easing = ease_out_quad if end > start else ease_in_quad
        for step in range(1, steps + 1):
            progress = easing(step / steps)
            await self._apply(start + (end - start) * progress)
            if duration > 0:
                await asyncio.sleep(duration / steps)

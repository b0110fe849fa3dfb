"""Crossfading playback for one display.

Two players take turns: the active one is visible and audible while the
inactive one preloads the next file. A transition fades an overlay to black,
swaps the roles and fades back. Only one transition runs at a time; further
load requests wait in a LoadQueue and are drained in order.
"""
import abc
import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

FADE_DURATION = 0.5  # seconds
OVERLAY_MESSAGE_DURATION = 3.0  # seconds


class MediaLoadError(Exception):
    """A player could not load the requested media."""


class PlaybackRejectedError(Exception):
    """The platform refused to start playback until the user interacts."""


class Player(abc.ABC):
    """One rendering surface of the crossfade pair."""

    def __init__(self, name: str):
        self.name = name
        self.on_ended: Optional[Callable[["Player"], None]] = None

    @property
    @abc.abstractmethod
    def paused(self) -> bool: ...

    @abc.abstractmethod
    async def load(self, url: str) -> None:
        """Starts loading `url`, paused."""

    @abc.abstractmethod
    async def wait_ready(self) -> None:
        """Returns once the media can play through; raises MediaLoadError."""

    @abc.abstractmethod
    async def play(self) -> None: ...

    @abc.abstractmethod
    async def pause(self) -> None: ...

    @abc.abstractmethod
    async def seek_start(self) -> None: ...

    @abc.abstractmethod
    async def set_muted(self, muted: bool) -> None: ...

    @abc.abstractmethod
    async def set_visible(self, visible: bool) -> None: ...

    @abc.abstractmethod
    async def show_text(self, text: str, duration: float) -> None: ...

    def ended(self) -> None:
        if self.on_ended is not None:
            self.on_ended(self)

    def __repr__(self):
        return f"<{type(self).__name__} {self.name}>"


class Overlay(abc.ABC):
    @abc.abstractmethod
    async def fade(self, start: float, end: float, duration: float) -> None:
        """Animates overlay opacity from `start` to `end` (0 is transparent)."""


@dataclass
class ClientPlaybackState:
    active: Player
    inactive: Player
    current_video: Optional[str] = None
    loading_video: Optional[str] = None
    is_muted: bool = True
    is_playing: bool = False
    loop: bool = True
    is_transitioning: bool = False

    def swap(self) -> Tuple[Player, Player]:
        """Exchanges roles and returns (new active, new inactive)."""
        self.active, self.inactive = self.inactive, self.active
        return self.active, self.inactive


class LoadQueue:
    def __init__(self):
        self._items = deque()

    def __len__(self):
        return len(self._items)

    def __contains__(self, file):
        return file in self._items

    def __iter__(self):
        return iter(list(self._items))

    def enqueue(self, file: str, current: Optional[str] = None, loading: Optional[str] = None) -> bool:
        """Appends `file` unless it is already playing, loading or queued."""
        if file == current or file == loading or file in self._items:
            return False
        self._items.append(file)
        return True

    def pop(self) -> Optional[str]:
        if not self._items:
            return None
        return self._items.popleft()

    def clear(self) -> None:
        self._items.clear()


Reporter = Callable[[Dict[str, Any]], Awaitable[None]]
Advancer = Callable[[Optional[str]], Awaitable[Optional[str]]]


class TransitionEngine:
    def __init__(
        self,
        players: Tuple[Player, Player],
        overlay: Overlay,
        media_url: Callable[[str], str],
        report: Optional[Reporter] = None,
        advance: Optional[Advancer] = None,
        ready_timeout: Optional[float] = None,
        fade_duration: float = FADE_DURATION,
    ):
        self.state = ClientPlaybackState(active=players[0], inactive=players[1])
        self.queue = LoadQueue()
        self.overlay = overlay
        self.media_url = media_url
        self.report = report
        self.advance = advance
        self.ready_timeout = ready_timeout
        self.fade_duration = fade_duration

        self._task: Optional[asyncio.Task] = None
        self._background = set()
        self._deferred_play: Optional[Player] = None

        for player in players:
            player.on_ended = self.on_ended

    # --- Load queue ---
    def enqueue(self, file: str) -> bool:
        state = self.state
        if not self.queue.enqueue(file, state.current_video, state.loading_video):
            logger.debug(f"Ignoring load of {file}, already current, loading or queued")
            return False
        self._start_next()
        return True

    def _start_next(self) -> None:
        if self.state.is_transitioning:
            return
        file = self.queue.pop()
        if file is None:
            return
        # Claimed before the first suspension point
        self.state.is_transitioning = True
        self.state.loading_video = file
        self._task = asyncio.get_running_loop().create_task(self._run(file))

    async def _run(self, file: str) -> None:
        try:
            await self._transition(file)
        except Exception:
            logger.exception(f"Transition recovery failed for {file}")
        finally:
            self.state.loading_video = None
            self.state.is_transitioning = False
            self._start_next()

    async def wait_idle(self) -> None:
        """Waits until the queue has fully drained."""
        while self._task is not None and not self._task.done():
            await self._task

    async def _transition(self, file: str) -> None:
        state = self.state
        incoming = state.inactive
        logger.info(f"Loading new video: {file}")
        try:
            await incoming.load(self.media_url(file))
            if self.ready_timeout:
                await asyncio.wait_for(incoming.wait_ready(), self.ready_timeout)
            else:
                await incoming.wait_ready()

            await self.overlay.fade(0.0, 1.0, self.fade_duration)
            await incoming.play()

            outgoing = state.active
            state.swap()
            state.current_video = file
            await outgoing.set_visible(False)
            await outgoing.pause()
            await outgoing.seek_start()
            await incoming.set_visible(True)
            logger.info(f"Swapped players, {incoming.name} is now active")

            await incoming.set_muted(state.is_muted)
            await self.overlay.fade(1.0, 0.0, self.fade_duration)
            state.loading_video = None
        except Exception as e:
            logger.error(f"Error during video loading of {file}: {e!r}")
            state.loading_video = None
            await self.overlay.fade(1.0, 0.0, self.fade_duration)

    # --- End of media ---
    def on_ended(self, player: Player) -> None:
        if player is not self.state.active:
            return
        if self.state.loop:
            logger.info("Video ended, looping is enabled")
            self._spawn(self._restart_in_place(player))
        else:
            logger.info("Video ended, advancing to next video")
            self._spawn(self._advance())

    async def _restart_in_place(self, player: Player) -> None:
        await player.seek_start()
        if player is not self.state.active:
            # Swapped out meanwhile; the incoming video replaced it
            return
        await self._start_playback(player)

    async def _advance(self) -> None:
        if self.advance is None:
            return
        file = await self.advance(self.state.current_video)
        if file:
            self.enqueue(file)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # --- Remote commands ---
    def _dropped(self, command: str) -> bool:
        if self.state.is_transitioning:
            logger.debug(f"Dropping {command} during transition")
            return True
        return False

    async def _report(self, updates: Dict[str, Any]) -> None:
        if self.report is not None:
            await self.report(updates)

    async def _start_playback(self, player: Player) -> bool:
        try:
            await player.play()
        except PlaybackRejectedError:
            logger.warning(f"Playback on {player.name} blocked until the next user interaction")
            self._deferred_play = player
            return False
        return True

    async def notify_interaction(self) -> None:
        """Resumes playback that was deferred by the platform, once."""
        player = self._deferred_play
        if player is None:
            return
        self._deferred_play = None
        if player is self.state.active and await self._start_playback(player):
            logger.info("Playback resumed after user interaction")
            await self._resumed()

    async def _resumed(self) -> None:
        self.state.is_playing = True
        if not self.state.is_transitioning:
            await self._report({"isPlaying": True})

    async def play(self) -> None:
        if self._dropped("play"):
            return
        if await self._start_playback(self.state.active):
            self.state.is_playing = True
            await self._report({"isPlaying": True})

    async def pause(self) -> None:
        if self._dropped("pause"):
            return
        await self.state.active.pause()
        self.state.is_playing = False
        await self._report({"isPlaying": False})

    async def restart(self) -> None:
        if self._dropped("restart"):
            return
        await self.state.active.seek_start()
        if await self._start_playback(self.state.active):
            self.state.is_playing = True
            await self._report({"isPlaying": True})

    async def set_muted(self, muted: bool) -> None:
        if self._dropped("mute" if muted else "unmute"):
            return
        self.state.is_muted = muted
        await self.state.active.set_muted(muted)
        await self.state.inactive.set_muted(muted)
        await self._report({"isMuted": muted})

    async def mute(self) -> None:
        await self.set_muted(True)

    async def unmute(self) -> None:
        await self.set_muted(False)

    async def notify_overlay(self, message: str) -> None:
        if self._dropped("notify-overlay"):
            return
        await self.state.active.show_text(message, OVERLAY_MESSAGE_DURATION)

    async def notify_fullscreen(self, message: str, duration_ms: float) -> None:
        if self._dropped("notify-fullscreen"):
            return
        duration = float(duration_ms) / 1000
        player = self.state.active
        await player.pause()
        await player.show_text(message, duration)
        await asyncio.sleep(duration)
        # A load may have swapped players during the message
        if self.state.is_transitioning:
            return
        if await self._start_playback(self.state.active):
            await self._resumed()

    # --- Status sync ---
    async def apply_status(self, status: Dict[str, Any]) -> None:
        """Brings this display in line with a status record from the server.

        Local state always follows; players are only touched while idle, the
        next transition picks up mute state on its own.
        """
        state = self.state
        idle = not state.is_transitioning

        if "isMuted" in status and status["isMuted"] != state.is_muted:
            state.is_muted = bool(status["isMuted"])
            if idle:
                await state.active.set_muted(state.is_muted)
                await state.inactive.set_muted(state.is_muted)

        if "loop" in status and status["loop"] is not None:
            if bool(status["loop"]) != state.loop:
                logger.info(f"Looping is now {'enabled' if status['loop'] else 'disabled'}")
            state.loop = bool(status["loop"])

        if "isPlaying" in status:
            state.is_playing = bool(status["isPlaying"])
            if idle and state.current_video is not None:
                if state.is_playing and state.active.paused:
                    await self._start_playback(state.active)
                elif not state.is_playing and not state.active.paused:
                    await state.active.pause()

        current = status.get("currentVideo")
        if current and current != state.current_video and current != state.loading_video:
            self.enqueue(current)

    async def reset(self) -> None:
        """Hard reset: abandons any transition and forgets all local state."""
        self.queue.clear()
        if self._task is not None and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._deferred_play = None

        state = self.state
        state.is_transitioning = False
        state.loading_video = None
        state.current_video = None
        state.is_playing = False
        for player in (state.active, state.inactive):
            await player.pause()
            await player.seek_start()
        await state.inactive.set_visible(False)
        await state.active.set_visible(True)
        await self.overlay.fade(0.0, 0.0, 0)

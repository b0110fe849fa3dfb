import asyncio

import pytest

from transition_engine import LoadQueue, TransitionEngine


def media_url(file):
    return f"/media/{file}"


async def settle(engine):
    for _ in range(5):
        await asyncio.sleep(0)
    await engine.wait_idle()


def make_engine(players, overlay, **kwargs):
    return TransitionEngine(players, overlay, media_url=media_url, fade_duration=0, **kwargs)


class Recorder:
    def __init__(self, result=None):
        self.calls = []
        self.result = result

    async def __call__(self, arg):
        self.calls.append(arg)
        return self.result


# --- LoadQueue ---
def test_queue_is_fifo():
    queue = LoadQueue()
    queue.enqueue("a")
    queue.enqueue("b")
    assert queue.pop() == "a"
    assert queue.pop() == "b"
    assert queue.pop() is None


@pytest.mark.parametrize("file", ["current.mp4", "loading.mp4", "queued.mp4"])
def test_queue_enqueue_is_idempotent(file):
    queue = LoadQueue()
    queue.enqueue("queued.mp4")
    before = len(queue)
    assert queue.enqueue(file, current="current.mp4", loading="loading.mp4") is False
    assert len(queue) == before


# --- Transitions ---
def test_transition_swaps_players(players, overlay):
    first, second = players

    async def scenario():
        engine = make_engine(players, overlay)
        assert engine.enqueue("a.mp4") is True
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    state = engine.state

    assert state.current_video == "a.mp4"
    assert state.loading_video is None
    assert state.is_transitioning is False
    assert state.active is second and state.inactive is first
    assert second.url == "/media/a.mp4"
    assert second.visible is True and second.muted is True
    assert first.visible is False and first.paused
    assert ("seek_start",) in first.calls
    assert overlay.fades == [(0.0, 1.0), (1.0, 0.0)]


def test_rapid_loads_queue_and_drain(players, overlay):
    first, second = players

    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("x.mp4")
        assert engine.state.is_transitioning is True
        assert engine.state.loading_video == "x.mp4"
        assert len(engine.queue) == 0

        engine.enqueue("y.mp4")
        assert list(engine.queue) == ["y.mp4"]

        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.current_video == "y.mp4"
    assert len(engine.queue) == 0
    assert engine.state.active is first
    assert ("load", "/media/x.mp4") in second.calls
    assert ("load", "/media/y.mp4") in first.calls


def test_enqueue_ignores_current_loading_and_queued(players, overlay):
    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("a.mp4")
        await settle(engine)

        assert engine.enqueue("a.mp4") is False

        engine.enqueue("b.mp4")
        assert engine.enqueue("b.mp4") is False

        engine.enqueue("c.mp4")
        length = len(engine.queue)
        assert engine.enqueue("c.mp4") is False
        assert len(engine.queue) == length
        await settle(engine)

    asyncio.run(scenario())


def test_failed_load_recovers_and_keeps_draining(players, overlay):
    first, second = players
    first.failing_urls.add("/media/bad.mp4")

    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("bad.mp4")
        engine.enqueue("good.mp4")
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    state = engine.state
    assert state.is_transitioning is False
    assert state.loading_video is None
    assert state.current_video == "good.mp4"
    assert overlay.fades == [(1.0, 0.0), (0.0, 1.0), (1.0, 0.0)]


def test_failed_load_alone_leaves_idle(players, overlay):
    players[0].failing_urls.add("/media/bad.mp4")

    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("bad.mp4")
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.is_transitioning is False
    assert engine.state.loading_video is None
    assert engine.state.current_video is None
    assert engine.state.active is players[0]


def test_stuck_load_times_out(players, overlay):
    class NeverReady(type(players[0])):
        async def wait_ready(self):
            await asyncio.sleep(10)

    stuck = (NeverReady("one"), NeverReady("two"))

    async def scenario():
        engine = make_engine(stuck, overlay, ready_timeout=0.01)
        engine.enqueue("slow.mp4")
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.is_transitioning is False
    assert engine.state.current_video is None


def test_rejected_play_during_transition_drops_file(players, overlay):
    players[1].reject_play = True

    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("a.mp4")
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.current_video is None
    assert engine.state.is_transitioning is False


# --- End of media ---
def test_loop_restarts_in_place(players, overlay):
    advance = Recorder("b.mp4")

    async def scenario():
        engine = make_engine(players, overlay, advance=advance)
        engine.enqueue("a.mp4")
        await settle(engine)
        active = engine.state.active
        active.calls.clear()
        overlay.fades.clear()

        active.ended()
        await settle(engine)
        return engine, active

    engine, active = asyncio.run(scenario())
    assert active.calls == [("seek_start",), ("play",)]
    assert engine.state.current_video == "a.mp4"
    assert advance.calls == []
    assert overlay.fades == []
    assert len(engine.queue) == 0


def test_end_without_loop_advances(players, overlay):
    advance = Recorder("b.mp4")

    async def scenario():
        engine = make_engine(players, overlay, advance=advance)
        engine.enqueue("a.mp4")
        await settle(engine)
        engine.state.loop = False

        engine.state.active.ended()
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert advance.calls == ["a.mp4"]
    assert engine.state.current_video == "b.mp4"


def test_end_from_inactive_player_is_ignored(players, overlay):
    advance = Recorder("b.mp4")

    async def scenario():
        engine = make_engine(players, overlay, advance=advance)
        engine.enqueue("a.mp4")
        await settle(engine)
        engine.state.loop = False
        engine.state.inactive.ended()
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert advance.calls == []
    assert engine.state.current_video == "a.mp4"


# --- Remote commands ---
def test_commands_dropped_during_transition(players, overlay):
    report = Recorder()

    async def scenario():
        engine = make_engine(players, overlay, report=report)
        engine.enqueue("a.mp4")
        await engine.unmute()
        await engine.pause()
        await engine.restart()
        await engine.notify_overlay("hi")
        assert engine.state.is_muted is True
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert report.calls == []
    assert engine.state.is_muted is True


def test_commands_when_idle_report_status(players, overlay):
    report = Recorder()

    async def scenario():
        engine = make_engine(players, overlay, report=report)
        engine.enqueue("a.mp4")
        await settle(engine)
        await engine.unmute()
        await engine.pause()
        await engine.play()
        await engine.restart()
        return engine

    engine = asyncio.run(scenario())
    assert report.calls == [{"isMuted": False}, {"isPlaying": False}, {"isPlaying": True}, {"isPlaying": True}]
    assert players[0].muted is False and players[1].muted is False
    assert engine.state.is_playing is True


def test_rejected_autoplay_resumes_once_after_interaction(players, overlay):
    report = Recorder()

    async def scenario():
        engine = make_engine(players, overlay, report=report)
        engine.enqueue("a.mp4")
        await settle(engine)
        active = engine.state.active
        await active.pause()
        active.reject_play = True

        await engine.play()
        assert report.calls == []
        assert active.paused

        active.reject_play = False
        active.calls.clear()
        await engine.notify_interaction()
        await engine.notify_interaction()
        return active

    active = asyncio.run(scenario())
    assert active.calls == [("play",)]
    assert not active.paused
    assert report.calls == [{"isPlaying": True}]


def test_notify_fullscreen_pauses_and_resumes(players, overlay):
    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("a.mp4")
        await settle(engine)
        active = engine.state.active
        active.calls.clear()
        await engine.notify_fullscreen("Closing soon", 0)
        return active

    active = asyncio.run(scenario())
    assert active.calls == [("pause",), ("show_text", "Closing soon", 0.0), ("play",)]


# --- Status sync ---
def test_apply_status_loads_and_syncs(players, overlay):
    async def scenario():
        engine = make_engine(players, overlay)
        await engine.apply_status({"currentVideo": "a.mp4", "isMuted": False, "loop": False, "isPlaying": True})
        assert engine.state.loading_video == "a.mp4"
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.current_video == "a.mp4"
    assert engine.state.is_muted is False
    assert engine.state.loop is False
    assert engine.state.active.muted is False


def test_apply_status_pauses_when_idle(players, overlay):
    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("a.mp4")
        await settle(engine)
        await engine.apply_status({"isPlaying": False, "currentVideo": "a.mp4"})
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.active.paused
    assert len(engine.queue) == 0


def test_reset_forgets_everything(players, overlay):
    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("a.mp4")
        engine.enqueue("b.mp4")
        await engine.reset()
        assert engine.state.is_transitioning is False
        assert len(engine.queue) == 0
        await settle(engine)
        return engine

    engine = asyncio.run(scenario())
    assert engine.state.current_video is None
    assert engine.state.loading_video is None


def test_fullscreen_message_resumes_whichever_player_is_active(players, overlay):
    report = Recorder()

    async def scenario():
        engine = make_engine(players, overlay, report=report)
        engine.enqueue("a.mp4")
        await settle(engine)
        before = engine.state.active

        message = asyncio.get_running_loop().create_task(engine.notify_fullscreen("Closing soon", 50))
        await asyncio.sleep(0)
        engine.enqueue("b.mp4")
        await settle(engine)
        await message
        return engine, before

    engine, before = asyncio.run(scenario())
    assert engine.state.current_video == "b.mp4"
    assert before is engine.state.inactive
    assert before.paused and before.visible is False
    assert not engine.state.active.paused
    assert report.calls == [{"isPlaying": True}]


def test_loop_restart_leaves_swapped_out_player_paused(players, overlay):
    async def scenario():
        engine = make_engine(players, overlay)
        engine.enqueue("a.mp4")
        await settle(engine)
        old, incoming = engine.state.active, engine.state.inactive

        ready = asyncio.Event()
        rewound = asyncio.Event()

        async def wait_ready():
            await ready.wait()

        async def seek_start():
            old.calls.append(("seek_start",))
            await rewound.wait()

        incoming.wait_ready = wait_ready
        old.seek_start = seek_start
        old.calls.clear()

        engine.enqueue("b.mp4")
        await asyncio.sleep(0)
        old.ended()
        await asyncio.sleep(0)

        ready.set()
        for _ in range(5):
            await asyncio.sleep(0)
        rewound.set()
        await settle(engine)
        return engine, old

    engine, old = asyncio.run(scenario())
    assert engine.state.current_video == "b.mp4"
    assert old is engine.state.inactive
    assert old.paused
    assert ("play",) not in old.calls

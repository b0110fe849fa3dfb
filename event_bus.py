import logging

logger = logging.getLogger(__name__)

# Event names shared by the server and every display client
PLAY = "play"
PAUSE = "pause"
RESTART = "restart"
REFRESH = "refresh"
LOAD = "load"
MUTE = "mute"
UNMUTE = "unmute"
NOTIFY_OVERLAY = "notify-overlay"
NOTIFY_FULLSCREEN = "notify-fullscreen"
STATUS_UPDATE = "status-update"

ALL_EVENTS = (
    PLAY,
    PAUSE,
    RESTART,
    REFRESH,
    LOAD,
    MUTE,
    UNMUTE,
    NOTIFY_OVERLAY,
    NOTIFY_FULLSCREEN,
    STATUS_UPDATE,
)


class EventBus:
    """Fan-out of named events to every connected display.

    Delivery is fire-and-forget: no acknowledgement and no ordering between
    different event types.
    """

    def __init__(self, socketio):
        self.socketio = socketio

    def publish(self, event: str, payload=None) -> None:
        if event not in ALL_EVENTS:
            raise ValueError(f"Unknown event: {event}")
        logger.info(f"Broadcasting {event}: {payload}")
        if payload is None:
            self.socketio.emit(event)
        else:
            self.socketio.emit(event, payload)

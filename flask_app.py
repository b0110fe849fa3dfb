import logging
import socket
import threading
from typing import Callable, List, Optional

from flask import Flask, Response, jsonify, render_template_string, request, stream_with_context
from flask_socketio import SocketIO, emit
from zeroconf import ServiceInfo, Zeroconf

from config import Config
from data_models import PlaylistCursor, StatusStore
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
    EventBus,
)
from utils import UpstreamError, fetch_video_list, open_media_stream

logger = logging.getLogger(__name__)

# Upstream headers worth passing through the media proxy
PASSTHROUGH_HEADERS = ("Content-Type", "Content-Length", "Content-Range", "Accept-Ranges", "Last-Modified", "ETag")
MEDIA_CHUNK_SIZE = 64 * 1024


class CommandRouter:
    """Turns control requests into status/playlist changes and broadcasts."""

    def __init__(
        self,
        store: StatusStore,
        cursor: PlaylistCursor,
        bus: EventBus,
        video_source: Callable[[], List[str]],
    ):
        self.store = store
        self.cursor = cursor
        self.bus = bus
        self.video_source = video_source
        # next/prev read-check-advance as one step
        self._advance_lock = threading.Lock()

    # --- Playback commands ---
    def play(self):
        self.bus.publish(PLAY)

    def pause(self):
        self.bus.publish(PAUSE)

    def restart(self):
        self.bus.publish(RESTART)

    def refresh(self):
        self.bus.publish(REFRESH)

    def mute(self):
        self.bus.publish(MUTE)

    def unmute(self):
        self.bus.publish(UNMUTE)

    def set_loop(self, enabled: bool) -> bool:
        return self.update_status({"loop": enabled})

    def load(self, file: str):
        # Later next() calls continue from the loaded file
        with self._advance_lock:
            self.store.merge({"currentVideo": file})
            self.cursor.seek(file)
        self.bus.publish(LOAD, {"file": file})

    def next(self, ended: Optional[str] = None) -> Optional[str]:
        """Advances the playlist, announcing the new file before loading it.

        When `ended` names a file that is no longer current, another display
        has already advanced past it, so the playlist is left alone.
        """
        with self._advance_lock:
            current = self.store.get("currentVideo")
            if ended is not None and ended != current:
                logger.info(f"Ignoring advance from {ended}, already on {current}")
                return current

            file = self.cursor.next()
            if file is None:
                logger.warning("Next requested but the playlist is empty")
                return None
            self.store.merge({"currentVideo": file})

        self.bus.publish(NOTIFY_OVERLAY, {"message": f"Up Next: {file}"})
        self.bus.publish(LOAD, {"file": file})
        return file

    def prev(self) -> Optional[str]:
        with self._advance_lock:
            file = self.cursor.prev()
            if file is None:
                logger.warning("Previous requested but the playlist is empty")
                return None
            self.store.merge({"currentVideo": file})

        self.bus.publish(LOAD, {"file": file})
        return file

    # --- Notifications ---
    def notify_overlay(self, message: str):
        self.bus.publish(NOTIFY_OVERLAY, {"message": message})

    def notify_fullscreen(self, message: str, duration):
        self.bus.publish(NOTIFY_FULLSCREEN, {"message": message, "duration": duration})

    # --- Status ---
    def update_status(self, partial: dict) -> bool:
        changed = self.store.merge(partial)
        if changed:
            self.bus.publish(STATUS_UPDATE, self.store.snapshot())
        return changed

    def update_video_list(self) -> List[str]:
        """Re-reads the playlist from the media sensor. Raises UpstreamError."""
        files = self.video_source()
        self.cursor.replace_list(files)
        logger.info(f"Playlist updated with {len(files)} videos")

        if files and not self.store.get("currentVideo"):
            self.update_status({"currentVideo": files[0]})
        return files


CONTROL_TEMPLATE = """
<!doctype html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Signage Control</title>
    <script src="https://cdn.socket.io/4.7.5/socket.io.min.js"></script>
    <style>
        body { font-family: 'Segoe UI', Tahoma, Geneva, Verdana, sans-serif; max-width: 900px; margin: 2rem auto; padding: 0 1rem; background: #f4f4f9; color: #333; }
        .container { background: white; padding: 2rem; border-radius: 12px; box-shadow: 0 4px 6px rgba(0,0,0,0.1); }
        h1 { margin-top: 0; color: #2c3e50; text-align: center; }
        h2 { border-bottom: 2px solid #eee; padding-bottom: 0.5rem; margin-bottom: 1rem; color: #444; }
        .section { margin-top: 2rem; }
        .controls { display: grid; grid-template-columns: repeat(4, 1fr); gap: 10px; }
        button { background: #3498db; color: white; border: none; padding: 12px; border-radius: 8px; cursor: pointer; font-size: 1rem; font-weight: bold; transition: background 0.3s; }
        button:hover { background: #2980b9; }
        input[type="text"] { width: 100%; padding: 12px; border: 2px solid #ddd; border-radius: 8px; box-sizing: border-box; font-size: 1rem; margin: 5px 0; }
        table { width: 100%; border-collapse: collapse; margin-top: 1rem; }
        th, td { text-align: left; padding: 12px; border-bottom: 1px solid #eee; }
        th { background-color: #f8f9fa; font-weight: 600; color: #555; }
        tr.current { background-color: #e8f4f8; font-weight: bold; }
        .empty-msg { text-align: center; color: #888; padding: 1.5rem; font-style: italic; }
        .notification { position: fixed; top: 20px; right: 20px; background-color: #4CAF50; color: white; padding: 15px; border-radius: 5px; opacity: 0; transition: opacity 0.5s ease-in-out; }
        .notification.show { opacity: 1; }
        .notification.error { background-color: #f44336; }
    </style>
</head>
<body>
    <div class="container">
        <h1>Signage Control</h1>

        <div class="controls">
            <button data-cmd="prev">Previous</button>
            <button data-cmd="play">Play</button>
            <button data-cmd="pause">Pause</button>
            <button data-cmd="next">Next</button>
            <button data-cmd="restart">Restart</button>
            <button data-cmd="mute">Mute</button>
            <button data-cmd="unmute">Unmute</button>
            <button data-cmd="refresh">Refresh Displays</button>
            <button data-cmd="loop">Loop On</button>
            <button data-cmd="unloop">Loop Off</button>
            <button data-cmd="updateVideoList">Update Playlist</button>
        </div>

        <div class="section">
            <h2>Overlay Message</h2>
            <input type="text" id="overlay-message" placeholder="Message to show on every display...">
            <button id="send-overlay">Send</button>
        </div>

        <div class="section">
            <h2>Status</h2>
            <table><tbody id="status-table"></tbody></table>
        </div>

        <div class="section">
            <h2>Playlist</h2>
            {% if playlist %}
                <table>
                    <thead><tr><th style="width: 5%;">#</th><th>File</th><th style="width: 15%;"></th></tr></thead>
                    <tbody>
                        {% for file in playlist %}
                        <tr class="{{ 'current' if file == status.currentVideo else '' }}">
                            <td>{{ loop.index }}</td>
                            <td>{{ file }}</td>
                            <td><button class="load-btn" data-file="{{ file }}">Load</button></td>
                        </tr>
                        {% endfor %}
                    </tbody>
                </table>
            {% else %}
                <div class="empty-msg">The playlist is currently empty.</div>
            {% endif %}
        </div>
    </div>

    <div id="notification" class="notification"></div>

    <script>
        function showNotification(message, isError = false) {
            const div = document.getElementById('notification');
            div.textContent = message;
            div.className = 'notification show' + (isError ? ' error' : '');
            setTimeout(() => div.classList.remove('show'), 3000);
        }

        async function post(path, body) {
            const options = { method: 'POST' };
            if (body) {
                options.headers = { 'Content-Type': 'application/json' };
                options.body = JSON.stringify(body);
            }
            const response = await fetch(`/api/${path}`, options);
            if (!response.ok) {
                showNotification(await response.text(), true);
                return;
            }
            showNotification(`Sent ${path}`);
            if (path === 'updateVideoList') {
                window.location.reload();
            }
        }

        function renderStatus(status) {
            const rows = Object.entries(status).map(([key, value]) => `<tr><th>${key}</th><td>${value}</td></tr>`);
            document.getElementById('status-table').innerHTML = rows.join('');
        }

        document.querySelectorAll('[data-cmd]').forEach(button => {
            button.addEventListener('click', () => post(button.dataset.cmd));
        });
        document.querySelectorAll('.load-btn').forEach(button => {
            button.addEventListener('click', () => post('load', { file: button.dataset.file }));
        });
        document.getElementById('send-overlay').addEventListener('click', () => {
            const message = document.getElementById('overlay-message').value;
            post('notify-overlay', { message });
        });

        const socket = io();
        socket.on('status-update', renderStatus);
        renderStatus({{ status | tojson }});
    </script>
</body>
</html>
"""


def _plain(message: str, status: int) -> Response:
    return Response(message, status=status, mimetype="text/plain")


def _ok() -> Response:
    return _plain("OK", 200)


def create_app(
    config: Config,
    store: Optional[StatusStore] = None,
    cursor: Optional[PlaylistCursor] = None,
    video_source: Optional[Callable[[], List[str]]] = None,
):
    """Builds the Flask app, its SocketIO server and the command router."""
    flask_app = Flask(__name__)
    socketio = SocketIO(flask_app, async_mode="threading", cors_allowed_origins="*")

    store = store if store is not None else StatusStore()
    cursor = cursor if cursor is not None else PlaylistCursor()
    if video_source is None:
        def video_source():
            return fetch_video_list(config)
    router = CommandRouter(store, cursor, EventBus(socketio), video_source)

    @flask_app.route("/", methods=["GET"])
    def index():
        return render_template_string(CONTROL_TEMPLATE, playlist=cursor.files, status=store.snapshot())

    @flask_app.route("/api/updateVideoList", methods=["POST"])
    def update_video_list():
        try:
            router.update_video_list()
        except UpstreamError as e:
            logger.error(f"Error fetching video list: {e}")
            return _plain("Error fetching video list", 500)
        return _ok()

    @flask_app.route("/api/playlist")
    def playlist():
        return jsonify({"files": cursor.files, "index": cursor.index})

    # --- Playback commands ---
    simple_commands = {
        "play": router.play,
        "pause": router.pause,
        "restart": router.restart,
        "refresh": router.refresh,
        "mute": router.mute,
        "unmute": router.unmute,
        "loop": lambda: router.set_loop(True),
        "unloop": lambda: router.set_loop(False),
    }

    @flask_app.route("/api/<command>", methods=["POST"])
    def playback_command(command):
        action = simple_commands.get(command)
        if action is None:
            return _plain(f"Unknown command: {command}", 404)
        action()
        return _ok()

    @flask_app.route("/api/next", methods=["POST"])
    def next_video():
        body = request.get_json(silent=True) or {}
        ended = body.get("ended") if isinstance(body, dict) else None
        return jsonify({"file": router.next(ended=ended)})

    @flask_app.route("/api/prev", methods=["POST"])
    def prev_video():
        return jsonify({"file": router.prev()})

    @flask_app.route("/api/load", methods=["POST"])
    def load_video():
        body = request.get_json(silent=True) or {}
        file = body.get("file") if isinstance(body, dict) else None
        if not file:
            return _plain("File parameter is required", 400)
        router.load(file)
        return _ok()

    # --- Notifications ---
    @flask_app.route("/api/notify-overlay", methods=["POST"])
    def notify_overlay():
        body = request.get_json(silent=True) or {}
        message = body.get("message") if isinstance(body, dict) else None
        if not message:
            return _plain("Message parameter is required", 400)
        router.notify_overlay(message)
        return _ok()

    @flask_app.route("/api/notify-fullscreen", methods=["POST"])
    def notify_fullscreen():
        body = request.get_json(silent=True) or {}
        if not isinstance(body, dict) or not body.get("message") or not body.get("duration"):
            return _plain("Message and duration parameters are required", 400)
        router.notify_fullscreen(body["message"], body["duration"])
        return _ok()

    # --- Status ---
    @flask_app.route("/api/status", methods=["GET"])
    def get_status():
        return jsonify(store.snapshot())

    @flask_app.route("/api/status", methods=["POST"])
    def post_status():
        updates = request.get_json(silent=True)
        if not isinstance(updates, dict):
            return _plain("Invalid status data", 400)
        router.update_status(updates)
        return _ok()

    # --- Media proxy ---
    @flask_app.route("/media/<path:filename>")
    def media(filename):
        try:
            upstream = open_media_stream(config, filename, request.headers.get("Range"))
        except UpstreamError as e:
            logger.error(str(e))
            return _plain("Error fetching media file", 500)

        headers = {key: upstream.headers[key] for key in PASSTHROUGH_HEADERS if key in upstream.headers}

        def generate():
            try:
                for chunk in upstream.iter_content(chunk_size=MEDIA_CHUNK_SIZE):
                    if chunk:
                        yield chunk
            finally:
                upstream.close()

        return Response(stream_with_context(generate()), status=upstream.status_code, headers=headers)

    # --- Socket events ---
    @socketio.on("connect")
    def handle_connect(auth=None):
        logger.info(f"Display connected: {request.sid}")
        emit(STATUS_UPDATE, store.snapshot())

    @socketio.on("disconnect")
    def handle_disconnect(*args):
        logger.info(f"Display disconnected: {request.sid}")

    return flask_app, socketio, router


def refresh_playlist(router: CommandRouter) -> None:
    try:
        router.update_video_list()
    except UpstreamError as e:
        logger.error(f"Error fetching video list: {e}")


def _poll_video_list(socketio: SocketIO, router: CommandRouter, interval: float):
    while True:
        socketio.sleep(interval)
        refresh_playlist(router)


def _local_ip() -> str:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        s.connect(("8.8.8.8", 80))  # Connect to an external host to get local IP
        return s.getsockname()[0]
    finally:
        s.close()


def run_flask(config: Config, flask_app: Flask, socketio: SocketIO, router: CommandRouter):
    refresh_playlist(router)
    if config.poll_interval > 0:
        socketio.start_background_task(_poll_video_list, socketio, router, config.poll_interval)

    zeroconf = None
    info = None
    try:
        if config.advertise:
            ip_address = _local_ip()
            info = ServiceInfo(
                "_http._tcp.local.",
                "Signage Control._http._tcp.local.",
                addresses=[socket.inet_aton(ip_address)],
                port=config.port,
                properties={"path": "/"},
                server="vidsync.local.",
            )
            zeroconf = Zeroconf()
            zeroconf.register_service(info)
            logger.info(f"mDNS service registered: http://vidsync.local:{config.port} (or http://{ip_address}:{config.port})")

        socketio.run(
            flask_app,
            host=config.host,
            port=config.port,
            debug=False,
            use_reloader=False,
            allow_unsafe_werkzeug=True,
        )
    finally:
        if zeroconf:
            logger.info("Unregistering mDNS service...")
            zeroconf.unregister_service(info)
            zeroconf.close()

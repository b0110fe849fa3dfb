from textual.app import App, ComposeResult
from textual.widgets import (
    Header,
    Footer,
    DataTable,
    Label,
    TabbedContent,
    TabPane,
)
from textual import work

from flask_app import CommandRouter
from utils import UpstreamError


# --- Textual TUI App ---
class SignageConsoleApp(App):
    CSS = """
    Screen {
        layout: vertical;
    }
    Header {
        dock: top;
    }
    Footer {
        dock: bottom;
    }
    DataTable {
        height: 1fr;
        border: solid green;
    }
    TabbedContent {
        height: 1fr;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("n", "next", "Next"),
        ("p", "prev", "Previous"),
        ("space", "toggle_play", "Play/Pause"),
        ("r", "restart", "Restart"),
        ("m", "toggle_mute", "Mute"),
        ("l", "toggle_loop", "Loop"),
        ("u", "update_playlist", "Update Playlist"),
        ("f", "refresh_displays", "Refresh Displays"),
        ("enter", "load_selected", "Load Selected"),
    ]

    def __init__(self, router: CommandRouter):
        super().__init__()
        self.router = router

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Label("Signage Control (N/P to skip, ENTER loads the selected file):", classes="box")

        with TabbedContent(initial="tab-status"):
            with TabPane("Status", id="tab-status"):
                yield DataTable(id="status-table")
            with TabPane("Playlist", id="tab-playlist"):
                yield DataTable(id="playlist-table")

        yield Footer()

    def on_mount(self) -> None:
        self.title = "Signage Console"

        s_table = self.query_one("#status-table", DataTable)
        s_table.cursor_type = "row"
        s_table.add_columns("Field", "Value")

        p_table = self.query_one("#playlist-table", DataTable)
        p_table.cursor_type = "row"
        p_table.add_columns("Idx", "File", "")

        self.set_interval(1.0, self.refresh_tables)
        self.refresh_tables()

    def refresh_tables(self) -> None:
        status = self.router.store.snapshot()

        s_table = self.query_one("#status-table", DataTable)
        s_table.clear()
        for key, value in status.items():
            s_table.add_row(key, str(value), key=key)

        p_table = self.query_one("#playlist-table", DataTable)
        cursor_coord = p_table.cursor_coordinate
        files = self.router.cursor.files
        p_table.clear()
        for idx, file in enumerate(files):
            marker = "now playing" if file == status["currentVideo"] else ""
            p_table.add_row(str(idx + 1), file, marker, key=str(idx))

        # Restore cursor if valid
        if cursor_coord.row < len(files):
            p_table.move_cursor(row=cursor_coord.row, column=cursor_coord.column)

    def action_next(self) -> None:
        file = self.router.next()
        if file:
            self.notify(f"Up Next: {file}")
        else:
            self.notify("The playlist is empty.", severity="warning")

    def action_prev(self) -> None:
        file = self.router.prev()
        if file:
            self.notify(f"Loading {file}")
        else:
            self.notify("The playlist is empty.", severity="warning")

    def action_toggle_play(self) -> None:
        if self.router.store.get("isPlaying"):
            self.router.pause()
        else:
            self.router.play()

    def action_restart(self) -> None:
        self.router.restart()

    def action_toggle_mute(self) -> None:
        if self.router.store.get("isMuted"):
            self.router.unmute()
        else:
            self.router.mute()

    def action_toggle_loop(self) -> None:
        enabled = not self.router.store.get("loop")
        self.router.set_loop(enabled)
        self.notify(f"Looping {'enabled' if enabled else 'disabled'}")
        self.refresh_tables()

    def action_refresh_displays(self) -> None:
        self.router.refresh()
        self.notify("Asked every display to reload.")

    def action_load_selected(self) -> None:
        tabbed = self.query_one(TabbedContent)
        if tabbed.active != "tab-playlist":
            return

        p_table = self.query_one("#playlist-table", DataTable)
        if p_table.row_count == 0:
            return
        row_key = p_table.coordinate_to_cell_key(p_table.cursor_coordinate).row_key
        file = p_table.get_row(row_key)[1]
        self.router.load(file)
        self.notify(f"Loading {file}")

    def action_update_playlist(self) -> None:
        self.notify("Fetching playlist...", severity="information")
        self.update_playlist_worker()

    @work(thread=True)
    def update_playlist_worker(self) -> None:
        try:
            files = self.router.update_video_list()
        except UpstreamError as e:
            self.call_from_thread(self.notify, f"Error fetching playlist: {e}", severity="error")
            return
        self.call_from_thread(self._finish_update, len(files))

    def _finish_update(self, count: int) -> None:
        self.notify(f"Playlist now has {count} videos.")
        self.refresh_tables()

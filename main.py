import argparse
import logging
import threading

from config import load_config
from flask_app import create_app, run_flask
from tui_app import SignageConsoleApp


def main(argv=None):
    parser = argparse.ArgumentParser(description="Signage playback sync server")
    parser.add_argument("--headless", action="store_true", help="Run without the operator console")
    args = parser.parse_args(argv)

    config = load_config()
    flask_app, socketio, router = create_app(config)

    if args.headless:
        logging.basicConfig(level=logging.INFO)
        run_flask(config, flask_app, socketio, router)
        return

    # The console owns the terminal, so logs go to a file
    logging.basicConfig(level=logging.INFO, filename="vidsync.log")
    flask_thread = threading.Thread(target=run_flask, args=(config, flask_app, socketio, router), daemon=True)
    flask_thread.start()

    SignageConsoleApp(router).run()


if __name__ == "__main__":
    main()

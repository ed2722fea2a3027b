"""
DB Pulse: entry point.

All application logic lives inside the ``dbpulse`` package.
Run with:  python main.py
"""

import logging

from dbpulse import create_app, live_hub, socketio
from dbpulse.core.config import Config
from dbpulse.services.monitor import start_monitor

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = create_app()

if __name__ == "__main__":
    start_monitor(live_hub, interval_ms=Config.STATUS_INTERVAL_MS)
    socketio.run(app, debug=True, host="0.0.0.0", port=5000, use_reloader=False, allow_unsafe_werkzeug=True)

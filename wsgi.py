import logging

from dbpulse import create_app, live_hub, socketio
from dbpulse.core.config import Config
from dbpulse.services.monitor import start_monitor

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")

app = create_app()
start_monitor(live_hub, interval_ms=Config.STATUS_INTERVAL_MS)

if __name__ == "__main__":
    # This file is intended to be run by Gunicorn:
    # gunicorn --worker-class gthread --threads 50 -w 1 wsgi:app
    socketio.run(app)

from flask import Flask
from flask_socketio import SocketIO

from dbpulse.web.live import LiveHub

socketio = SocketIO()
live_hub = LiveHub()


def create_app(config_overrides: dict | None = None) -> Flask:
    """Application factory: creates and configures the Flask app."""
    app = Flask(__name__)
    app.config.from_object("dbpulse.core.config.Config")
    if config_overrides:
        app.config.update(config_overrides)

    # The refresh loop runs on its own native thread, so no green threads here
    socketio.init_app(app, cors_allowed_origins="*", async_mode="threading")

    # ---- Encryption + persistent storage ----------------------------
    from dbpulse.core.crypto import init_crypto
    from dbpulse.core.telemetry import init_telemetry
    from dbpulse.database.connection import load_saved_servers
    from dbpulse.database.storage import init_storage

    init_telemetry()
    init_crypto(app.config["DATA_DIR"])
    init_storage(app.config["DATA_DIR"])
    load_saved_servers()

    # Instrument Flask app for OpenTelemetry
    from opentelemetry.instrumentation.flask import FlaskInstrumentor

    FlaskInstrumentor().instrument_app(app)
    # -----------------------------------------------------------------

    # Register blueprints
    from dbpulse.web.routes import register_blueprints

    register_blueprints(app)

    # Register SocketIO handlers on the server init_app just built
    from dbpulse.web.sockets import register_socket_handlers

    register_socket_handlers(socketio)

    live_hub.init_app(app, socketio)
    live_hub.start()

    return app

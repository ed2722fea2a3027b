from flask import Flask


def register_blueprints(app: Flask) -> None:
    from dbpulse.api import api_bp

    app.register_blueprint(api_bp, url_prefix="/api")

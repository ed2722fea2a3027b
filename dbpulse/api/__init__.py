from flask import Blueprint

# Import and register all sub-blueprints
from .explain import explain_bp
from .metrics import metrics_bp
from .servers import servers_bp

api_bp = Blueprint("api", __name__)

api_bp.register_blueprint(servers_bp)
api_bp.register_blueprint(metrics_bp)
api_bp.register_blueprint(explain_bp)

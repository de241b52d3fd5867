# src/main.py
import logging
import time

from flask import Flask, request, session, jsonify, g, abort

from src.config import Config
from src.database import get_db, close_db, init_database
from src.models import User
from src.blueprints.helpers import is_admin_request
from src.blueprints.mega_offer import mega_offer_bp
from src.blueprints.mega_offer_admin import mega_offer_admin_bp
from src.observability import (
    configure_logging,
    increment_counter,
    observe_latency,
    get_metrics_snapshot,
    check_database_health,
)
from src.observability.logging_config import ensure_request_id

app = Flask(__name__)
Config.configure_app(app)
configure_logging(app)
app.register_blueprint(mega_offer_bp)
app.register_blueprint(mega_offer_admin_bp)

logger = logging.getLogger(__name__)

# Initialize database on startup
init_database()


@app.before_request
def before_request_logging():
    g.current_user = None
    if 'user_id' in session:
        db = get_db()
        g.current_user = db.query(User).filter_by(userID=session['user_id']).first()
    g.request_started_at = time.perf_counter()
    g.request_id = ensure_request_id()
    increment_counter(
        "http_requests_total",
        labels={
            "method": request.method,
            "endpoint": request.endpoint or request.path,
        },
    )


@app.after_request
def after_request_logging(response):
    started = getattr(g, 'request_started_at', None)
    if started is not None:
        duration_ms = (time.perf_counter() - started) * 1000
        observe_latency(
            "http_request_latency_ms",
            duration_ms,
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
    if response.status_code >= 500:
        increment_counter(
            "http_errors_total",
            labels={
                "method": request.method,
                "endpoint": request.endpoint or request.path,
                "status": str(response.status_code),
            },
        )
        logger.error("Request finished with error status %s", response.status_code)
    else:
        logger.info("Request finished", extra={"status_code": response.status_code})
    response.headers[Config.REQUEST_ID_HEADER] = g.get('request_id', '')
    return response


@app.teardown_appcontext
def teardown_db(exception):
    close_db(exception)


@app.route('/health', methods=['GET'])
def health():
    db_status = check_database_health()
    overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
    status_code = 200 if overall == "UP" else 503
    return jsonify({
        "status": overall,
        "components": {
            "database": db_status
        }
    }), status_code


@app.route('/admin/metrics', methods=['GET'])
def admin_metrics():
    if not is_admin_request():
        abort(403)
    return jsonify(get_metrics_snapshot())

# customtees/main.py
import logging
import time
from typing import Any, Dict

from flask import Flask, g, jsonify, request
from werkzeug.exceptions import HTTPException

from customtees.config import Config
from customtees.database import close_db, get_db, init_db
from customtees.errors import CheckoutError, GatewayError
from customtees.gateways import CloudinaryImageStore, RazorpayClient, SquareClient, UpsClient
from customtees.blueprints.account import account_bp
from customtees.blueprints.auth import auth_bp
from customtees.blueprints.cart import cart_bp
from customtees.blueprints.common import require_admin
from customtees.blueprints.coupons import coupons_bp
from customtees.blueprints.orders import orders_bp
from customtees.blueprints.payments import payments_bp
from customtees.blueprints.shipments import shipments_bp
from customtees.observability import (
    check_database_health,
    configure_logging,
    get_metrics_snapshot,
    increment_counter,
    integration_summary,
    observe_latency,
)
from customtees.observability.logging_config import ensure_request_id

logger = logging.getLogger(__name__)

BLUEPRINTS = (auth_bp, account_bp, cart_bp, orders_bp, payments_bp, shipments_bp, coupons_bp)


def build_integrations(config: type[Config] = Config) -> Dict[str, Any]:
    """Outbound clients for every integration enabled in configuration."""
    gateways: Dict[str, Any] = {}
    if "square" in config.PAYMENT_METHODS:
        gateways["square"] = SquareClient.from_config(config)
    if "razorpay" in config.PAYMENT_METHODS:
        gateways["razorpay"] = RazorpayClient.from_config(config)

    image_store = carrier = None
    if config.SHIPPING_ENABLED:
        image_store = CloudinaryImageStore.from_config(config)
        carrier = UpsClient.from_config(image_store, config)
    return {
        "customtees.payment_gateways": gateways,
        "customtees.carrier": carrier,
        "customtees.image_store": image_store,
    }


def create_app() -> Flask:
    app = Flask(__name__)
    Config.configure_app(app)
    configure_logging(app)
    app.extensions.update(build_integrations(Config))
    for blueprint in BLUEPRINTS:
        app.register_blueprint(blueprint)
    _register_request_hooks(app)
    _register_error_handlers(app)
    _register_system_routes(app)
    init_db()
    logger.info("CustomTees started", extra={"integrations": integration_summary()})
    return app


def _register_request_hooks(app: Flask) -> None:
    @app.before_request
    def before_request_logging():
        g.request_started_at = time.perf_counter()
        g.request_id = ensure_request_id()
        increment_counter(
            "http_requests_total",
            labels={"method": request.method, "endpoint": request.endpoint or request.path},
        )

    @app.after_request
    def after_request_logging(response):
        started = getattr(g, "request_started_at", None)
        labels = {
            "method": request.method,
            "endpoint": request.endpoint or request.path,
            "status": str(response.status_code),
        }
        if started is not None:
            observe_latency("http_request_latency_ms", (time.perf_counter() - started) * 1000, labels=labels)
        response.headers[Config.REQUEST_ID_HEADER] = getattr(g, "request_id", "") or ""
        if response.status_code >= 500:
            increment_counter("http_errors_total", labels=labels)
            logger.error("Request finished with error status %s", response.status_code)
        else:
            logger.info("Request finished", extra={"status_code": response.status_code})
        return response

    @app.teardown_appcontext
    def teardown_db(exception):
        close_db(exception)


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(CheckoutError)
    def handle_checkout_error(error: CheckoutError):
        get_db().rollback()
        if isinstance(error, GatewayError):
            logger.error(
                "Gateway failure: %s",
                error.message,
                extra={"provider": error.provider, "details": error.details},
            )
        else:
            logger.info("Request rejected: %s", error.message, extra={"kind": error.kind})
        return jsonify(error.to_dict()), error.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(error: HTTPException):
        return jsonify({"success": False, "message": error.description, "error": error.name}), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        get_db().rollback()
        logger.exception("Unhandled error: %s", error)
        return jsonify({"success": False, "message": "Internal server error", "error": "SERVER_ERROR"}), 500


def _register_system_routes(app: Flask) -> None:
    @app.route("/health", methods=["GET"])
    def health():
        db_status = check_database_health()
        overall = "UP" if db_status.get("status") == "UP" else "DEGRADED"
        status_code = 200 if overall == "UP" else 503
        return jsonify(
            {
                "status": overall,
                "components": {"database": db_status},
                "integrations": integration_summary(),
            }
        ), status_code

    @app.route("/admin/metrics", methods=["GET"])
    def admin_metrics():
        require_admin()
        return jsonify(get_metrics_snapshot())


app = create_app()

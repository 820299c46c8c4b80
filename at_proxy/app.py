# Caching AT API proxy for the realtime map.

import logging
from typing import Optional

from flask import Flask, Response, current_app, make_response, request
from werkzeug.exceptions import HTTPException

from .config import Settings
from .relay import RelayResponse, error_response
from .service import ProxyService, parse_ids

log = logging.getLogger("at_proxy")

EXPOSED_HEADERS = "Cache-Control, Retry-After, X-Cache, X-Upstream-Status"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level)
    log.setLevel(level)


def to_flask(relay: RelayResponse) -> Response:
    resp = make_response(relay.body, relay.status)
    for name, value in relay.headers.items():
        resp.headers[name] = value
    return resp


def get_service() -> ProxyService:
    return current_app.extensions["at_proxy"]


def missing_key_response() -> Response:
    return to_flask(error_response(500, "Upstream API key not configured"))


def create_app(
    settings: Optional[Settings] = None, service: Optional[ProxyService] = None
) -> Flask:
    if settings is None:
        settings = service.settings if service is not None else Settings.from_env()
    configure_logging(settings.log_level)
    if service is None:
        service = ProxyService(settings)
    if not service.configured:
        log.warning("AT_API_KEY not set; upstream requests will be refused")

    app = Flask(__name__)
    app.extensions["at_proxy"] = service
    allow_any_origin = "*" in settings.cors_allowed_origins
    allowed_origins = set(settings.cors_allowed_origins)

    @app.before_request
    def answer_preflight() -> Optional[Response]:
        if request.path.startswith("/api/") and request.method == "OPTIONS":
            return make_response("", 204)
        return None

    @app.after_request
    def add_common_headers(resp: Response) -> Response:
        origin = request.headers.get("Origin")
        if allow_any_origin:
            resp.headers["Access-Control-Allow-Origin"] = "*"
        elif origin and origin in allowed_origins:
            resp.headers["Access-Control-Allow-Origin"] = origin
            resp.headers["Vary"] = "Origin"
        if "Access-Control-Allow-Origin" in resp.headers:
            resp.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
            resp.headers["Access-Control-Allow-Headers"] = "Content-Type, Authorization"
            resp.headers["Access-Control-Expose-Headers"] = EXPOSED_HEADERS
            resp.headers["Access-Control-Max-Age"] = "600"

        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("X-Frame-Options", "DENY")

        if settings.enable_hsts and request.is_secure:
            resp.headers.setdefault(
                "Strict-Transport-Security",
                f"max-age={settings.hsts_max_age_sec}; includeSubDomains",
            )
        return resp

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc
        log.exception("Unhandled error: %s", exc)
        return to_flask(error_response(500, "Internal server error"))

    @app.route("/api/routes", methods=["GET", "OPTIONS"])
    def routes() -> Response:
        svc = get_service()
        if not svc.configured:
            return missing_key_response()
        query = request.query_string.decode("utf-8", errors="replace")
        return to_flask(svc.get_routes(query))

    @app.route("/api/realtime", methods=["GET", "OPTIONS"])
    def realtime() -> Response:
        svc = get_service()
        if not svc.configured:
            return missing_key_response()
        return to_flask(svc.get_realtime())

    @app.route("/api/trips", methods=["GET", "OPTIONS"])
    def trips() -> Response:
        svc = get_service()
        if not svc.configured:
            return missing_key_response()
        return to_flask(svc.get_trips(parse_ids(request.args.get("ids"))))

    @app.route("/api/trips/<path:trip_id>", methods=["GET", "OPTIONS"])
    def trip(trip_id: str) -> Response:
        svc = get_service()
        if not svc.configured:
            return missing_key_response()
        return to_flask(svc.get_trip(trip_id))

    return app


def main() -> None:
    settings = Settings.from_env()
    create_app(settings).run(host=settings.host, port=settings.port, threaded=True)


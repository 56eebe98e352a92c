from __future__ import annotations

from functools import wraps
import hmac
import logging

from flask import Flask, Response, request
from prometheus_client import CONTENT_TYPE_LATEST

from wireguard_exporter.config import ServerConfig
from wireguard_exporter.registry import MetricRegistry

AUTH_REALM = "Wireguard Exporter"

LANDING_PAGE = """<html>
<head><title>WireGuard Exporter</title></head>
<body>
<h1>WireGuard Exporter</h1>
<p><a href="/metrics">Metrics</a></p>
</body>
</html>
"""


def _credentials_match(given: str, expected: str) -> bool:
    return hmac.compare_digest(given.encode("utf-8"), expected.encode("utf-8"))


def require_basic_auth(view, username: str, password: str):
    @wraps(view)
    def wrapper(*args, **kwargs):
        auth = request.authorization
        if (
            auth is None
            or auth.type != "basic"
            or not _credentials_match(auth.username or "", username)
            or not _credentials_match(auth.password or "", password)
        ):
            return Response(
                "Unauthorized\n",
                status=401,
                headers={"WWW-Authenticate": f'Basic realm="{AUTH_REALM}"'},
                mimetype="text/plain",
            )
        return view(*args, **kwargs)

    return wrapper


def create_app(registry: MetricRegistry, config: ServerConfig) -> Flask:
    app = Flask(__name__)
    logger = logging.getLogger("wireguard_exporter.server")

    def metrics() -> Response:
        return Response(registry.render(), content_type=CONTENT_TYPE_LATEST)

    if config.auth_enabled:
        logger.info("Basic authentication enabled for user: %s", config.auth_user)
        metrics = require_basic_auth(metrics, config.auth_user, config.auth_pass)
    else:
        logger.info("Basic authentication disabled")

    app.add_url_rule("/metrics", "metrics", metrics, methods=["GET"])
    app.add_url_rule(
        "/", "index", lambda: Response(LANDING_PAGE, mimetype="text/html"), methods=["GET"]
    )
    return app

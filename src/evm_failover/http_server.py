# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.http_server module

Status endpoints for operators.

Uses falcon (WSGI). GET /health reports both cached selections, and with
?probe=true also runs a live acquire(). GET /endpoints lists the registry.
"""

import falcon

from evm_failover.errors import NoHealthyEndpoint


class HealthResource:
    """GET /health: cache state, optionally verified with a live probe."""

    def __init__(self, gateway):
        self.gateway = gateway

    def on_get(self, req, resp):
        body = {"status": "ok", "cache": self.gateway.status()}

        if req.get_param_as_bool("probe", default=False):
            try:
                handle = self.gateway.acquire()
            except NoHealthyEndpoint as exc:
                resp.status = falcon.HTTP_503
                resp.content_type = falcon.MEDIA_JSON
                resp.media = {
                    "status": "unavailable",
                    "error": exc.user_message,
                    "cache": self.gateway.status(),
                }
                return
            body["endpoint"] = handle.endpoint.name
            body["cache"] = self.gateway.status()

        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = body


class EndpointsResource:
    """GET /endpoints: configured endpoints in priority order."""

    def __init__(self, registry):
        self.registry = registry

    def on_get(self, req, resp):
        resp.status = falcon.HTTP_200
        resp.content_type = falcon.MEDIA_JSON
        resp.media = [
            {
                "name": e.name,
                "url": e.url,
                "priority": e.priority,
                "supports_logs": e.supports_logs,
            }
            for e in self.registry.list()
        ]


def create_app(gateway):
    """Create and return a falcon WSGI application.

    Args:
        gateway: RPCGateway to report on.

    Returns:
        A falcon.App instance ready to be served.
    """
    app = falcon.App()
    app.add_route("/health", HealthResource(gateway))
    app.add_route("/endpoints", EndpointsResource(gateway.registry))
    return app

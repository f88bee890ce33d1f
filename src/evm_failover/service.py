# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.service module

Configuration loading and wiring of the RPC access layer.

Configuration is loaded from environment variables with sensible defaults.
The endpoint list comes from, in order of precedence:
  - RPC_ENDPOINTS_FILE: JSON list of {url, priority, name, supports_logs}
  - ETH_RPC_URL: comma-separated URLs, priority by position
  - RPC_NETWORK: one of the built-in public endpoint lists
"""

import json
import logging
import os

from evm_failover.gateway import RPCGateway
from evm_failover.http_server import create_app
from evm_failover.registry import (
    NON_LOG_COMPATIBLE_URLS,
    EndpointRegistry,
    make_endpoint,
    network_endpoints,
)

logger = logging.getLogger("evm_failover")

# Default configuration values
DEFAULTS = {
    "ETH_RPC_URL": "",
    "RPC_ENDPOINTS_FILE": "",
    "RPC_NETWORK": "base-mainnet",
    "RPC_NO_LOGS_URLS": "",
    "RPC_CACHE_TTL": "300",
    "RPC_MAX_FAIL_COUNT": "3",
    "RPC_DEFAULT_TIMEOUT": "10",
    "RPC_MAX_ATTEMPTS": "3",
    "RPC_RECEIPT_MAX_ATTEMPTS": "5",
    "RPC_BASE_BACKOFF": "1.0",
    "RPC_MAX_BACKOFF": "10.0",
    "RPC_LOG_STEP": "1000",
    "RPC_SELECTION_JITTER": "1.5",
    "STATUS_PORT": "5690",
}

INT_KEYS = (
    "RPC_MAX_FAIL_COUNT",
    "RPC_MAX_ATTEMPTS",
    "RPC_RECEIPT_MAX_ATTEMPTS",
    "RPC_LOG_STEP",
    "STATUS_PORT",
)
FLOAT_KEYS = (
    "RPC_CACHE_TTL",
    "RPC_DEFAULT_TIMEOUT",
    "RPC_BASE_BACKOFF",
    "RPC_MAX_BACKOFF",
    "RPC_SELECTION_JITTER",
)


def _split_urls(value):
    return [u.strip() for u in value.split(",") if u.strip()]


def load_config(environ=None):
    """Load configuration from environment variables.

    Args:
        environ: mapping to read from; os.environ when None.

    Returns:
        dict with all configuration values, numerics parsed.
    """
    if environ is None:
        environ = os.environ
    config = {}
    for key, default in DEFAULTS.items():
        config[key] = environ.get(key, default)
    try:
        for key in INT_KEYS:
            config[key] = int(config[key])
        for key in FLOAT_KEYS:
            config[key] = float(config[key])
    except ValueError as exc:
        raise ValueError(f"Invalid numeric configuration value: {exc}") from exc
    return config


def load_endpoints_file(path, no_logs_urls=NON_LOG_COMPATIBLE_URLS):
    """Read endpoints from a JSON file.

    The file holds a list of objects with a required "url" and optional
    "priority" (defaults to position), "name" and "supports_logs".
    """
    with open(path) as f:
        entries = json.load(f)
    if not isinstance(entries, list):
        raise ValueError(f"{path}: expected a JSON list of endpoints")
    endpoints = []
    for index, entry in enumerate(entries):
        if "url" not in entry:
            raise ValueError(f"{path}: endpoint #{index} has no url")
        endpoints.append(make_endpoint(
            entry["url"],
            entry.get("priority", index),
            entry.get("name"),
            entry.get("supports_logs"),
            no_logs_urls=no_logs_urls,
        ))
    return endpoints


def load_endpoints(config):
    """Resolve the configured endpoint list.

    Raises:
        ValueError: the resulting list is empty.
    """
    no_logs_urls = NON_LOG_COMPATIBLE_URLS | frozenset(
        _split_urls(config["RPC_NO_LOGS_URLS"])
    )
    if config["RPC_ENDPOINTS_FILE"]:
        endpoints = load_endpoints_file(config["RPC_ENDPOINTS_FILE"], no_logs_urls)
    elif config["ETH_RPC_URL"]:
        endpoints = [
            make_endpoint(url, priority, no_logs_urls=no_logs_urls)
            for priority, url in enumerate(_split_urls(config["ETH_RPC_URL"]))
        ]
    else:
        endpoints = network_endpoints(config["RPC_NETWORK"], no_logs_urls)

    if not endpoints:
        raise ValueError("At least one RPC endpoint is required")
    return endpoints


def build_gateway(config=None, **overrides):
    """Wire an RPCGateway from configuration.

    Args:
        config: dict from load_config(). Loaded from env if None.
        overrides: extra RPCGateway keyword arguments (handle_factory,
            sleep, clock, rng).

    Returns:
        An RPCGateway.
    """
    if config is None:
        config = load_config()

    registry = EndpointRegistry(load_endpoints(config))
    logger.info(
        "Loaded %d RPC endpoints (%d log-capable)",
        len(registry), len(registry.list("logs")),
    )
    return RPCGateway(
        registry,
        cache_ttl=config["RPC_CACHE_TTL"],
        max_fail_count=config["RPC_MAX_FAIL_COUNT"],
        timeout=config["RPC_DEFAULT_TIMEOUT"],
        max_attempts=config["RPC_MAX_ATTEMPTS"],
        receipt_max_attempts=config["RPC_RECEIPT_MAX_ATTEMPTS"],
        base_backoff=config["RPC_BASE_BACKOFF"],
        cap_backoff=config["RPC_MAX_BACKOFF"],
        log_step=config["RPC_LOG_STEP"],
        jitter=config["RPC_SELECTION_JITTER"],
        **overrides,
    )


def run_status_server(config=None):
    """Serve the status app over wsgiref (blocking)."""
    from wsgiref.simple_server import WSGIRequestHandler, make_server

    class QuietHandler(WSGIRequestHandler):
        def log_request(self, code="-", size="-"):
            pass  # Suppress per-request logging

    if config is None:
        config = load_config()
    gateway = build_gateway(config)
    app = create_app(gateway)

    port = config["STATUS_PORT"]
    httpd = make_server("0.0.0.0", port, app, handler_class=QuietHandler)
    logger.info("Status server listening on port %d", port)
    try:
        httpd.serve_forever()
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    finally:
        httpd.server_close()
        gateway.close()

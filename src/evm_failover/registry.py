# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.registry module

Static, ordered list of candidate JSON-RPC endpoints.

Each endpoint carries a priority (lower is preferred) and a flag telling
whether it serves wide eth_getLogs ranges. The registry is built once at
startup and never mutated afterwards.
"""

import collections

LOGS = "logs"

Endpoint = collections.namedtuple(
    "Endpoint", ["url", "priority", "name", "supports_logs"]
)
Endpoint.__doc__ = "A single JSON-RPC URL with its priority and log capability."

# Public endpoints known to reject or truncate wide eth_getLogs ranges.
NON_LOG_COMPATIBLE_URLS = frozenset({
    "https://1rpc.io/base",
})

BASE_MAINNET_ENDPOINTS = (
    ("https://base-rpc.publicnode.com/", "PublicNode"),
    ("https://base.llamarpc.com", "LlamaRPC"),
    ("https://1rpc.io/base", "1RPC"),
    ("https://mainnet.base.org", "Base Mainnet"),
    ("https://base.drpc.org", "DRPC"),
    ("https://rpc.ankr.com/base", "Ankr"),
)

BASE_SEPOLIA_ENDPOINTS = (
    ("https://sepolia.base.org", "Base Sepolia"),
    ("https://base-sepolia-rpc.publicnode.com", "PublicNode Sepolia"),
)

NETWORKS = {
    "base-mainnet": BASE_MAINNET_ENDPOINTS,
    "base-sepolia": BASE_SEPOLIA_ENDPOINTS,
}


def make_endpoint(url, priority, name=None, supports_logs=None,
                  no_logs_urls=NON_LOG_COMPATIBLE_URLS):
    """Build an Endpoint, deriving missing fields.

    Args:
        url: JSON-RPC URL.
        priority: integer, lower is preferred.
        name: display name; defaults to the URL host.
        supports_logs: explicit capability flag. When None the flag is
            derived from no_logs_urls.
        no_logs_urls: URLs known not to serve wide log queries.
    """
    url = url.strip()
    if not name:
        name = url.split("://", 1)[-1].split("/", 1)[0]
    if supports_logs is None:
        supports_logs = url not in no_logs_urls
    return Endpoint(url, int(priority), name, bool(supports_logs))


def network_endpoints(network, no_logs_urls=NON_LOG_COMPATIBLE_URLS):
    """Return the built-in endpoint list for a named network."""
    try:
        entries = NETWORKS[network]
    except KeyError:
        raise ValueError(
            f"Unknown network {network!r}, expected one of {sorted(NETWORKS)}"
        ) from None
    return [
        make_endpoint(url, priority, name, no_logs_urls=no_logs_urls)
        for priority, (url, name) in enumerate(entries)
    ]


class EndpointRegistry:
    """Ordered, immutable collection of Endpoint records.

    Usage:
        registry = EndpointRegistry(network_endpoints("base-mainnet"))
        for endpoint in registry.list(LOGS):
            ...
    """

    def __init__(self, endpoints):
        endpoints = tuple(endpoints)
        if not endpoints:
            raise ValueError("At least one RPC endpoint is required")
        seen = set()
        for endpoint in endpoints:
            if endpoint.url in seen:
                raise ValueError(f"Duplicate RPC endpoint {endpoint.url}")
            seen.add(endpoint.url)
        # Stable sort keeps declaration order among equal priorities.
        self._endpoints = tuple(sorted(endpoints, key=lambda e: e.priority))

    def list(self, capability=None):
        """Return endpoints in ascending priority order.

        Args:
            capability: None for every endpoint, or LOGS to keep only
                endpoints that serve wide eth_getLogs ranges.

        Returns:
            A list of Endpoint.
        """
        if capability is None:
            return list(self._endpoints)
        if capability == LOGS:
            return [e for e in self._endpoints if e.supports_logs]
        raise ValueError(f"Unknown endpoint capability {capability!r}")

    def __len__(self):
        return len(self._endpoints)

    def __iter__(self):
        return iter(self._endpoints)

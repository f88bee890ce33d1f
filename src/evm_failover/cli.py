# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.cli module

Command-line interface for the RPC access layer.

Commands:
  evm-failover info     — Show configuration and endpoints
  evm-failover probe    — Probe every endpoint once
  evm-failover block    — Fetch a block
  evm-failover tx       — Fetch a transaction
  evm-failover receipt  — Poll for a transaction receipt
  evm-failover logs     — Paginated log query
  evm-failover serve    — Run the status HTTP server
"""

import argparse
import json
import logging
import sys

from web3 import Web3

from evm_failover.errors import RPCAccessError
from evm_failover.service import build_gateway, load_config, run_status_server


def _print_json(value):
    if value is None:
        print("null")
    elif isinstance(value, list):
        print("[" + ",".join(Web3.to_json(item) for item in value) + "]")
    else:
        print(Web3.to_json(value))


def cmd_info(args):
    """Show configuration and the resolved endpoint list."""
    config = load_config()
    gateway = build_gateway(config)

    print(f"Cache TTL:         {config['RPC_CACHE_TTL']:g}s")
    print(f"Max fail count:    {config['RPC_MAX_FAIL_COUNT']}")
    print(f"Default timeout:   {config['RPC_DEFAULT_TIMEOUT']:g}s")
    print(f"Max attempts:      {config['RPC_MAX_ATTEMPTS']} "
          f"(receipts: {config['RPC_RECEIPT_MAX_ATTEMPTS']})")
    print(f"Backoff:           {config['RPC_BASE_BACKOFF']:g}s "
          f"to {config['RPC_MAX_BACKOFF']:g}s")
    print(f"Log step:          {config['RPC_LOG_STEP']} blocks")
    print("Endpoints:")
    for e in gateway.registry.list():
        logs = "logs" if e.supports_logs else "no-logs"
        print(f"  [{e.priority}] {e.name:<16} {logs:<8} {e.url}")
    gateway.close()


def cmd_probe(args):
    """Probe every configured endpoint and report which are healthy."""
    gateway = build_gateway()
    healthy = 0
    for endpoint in gateway.registry.list():
        handle = gateway.selector.handle_factory(endpoint)
        ok = gateway.checker.probe(handle)
        healthy += ok
        print(f"{'OK  ' if ok else 'FAIL'} {endpoint.name:<16} {endpoint.url}")
    gateway.close()
    if not healthy:
        sys.exit(1)


def _block_identifier(value):
    if value in ("latest", "earliest", "pending", "safe", "finalized"):
        return value
    return int(value, 0)


def cmd_block(args):
    gateway = build_gateway()
    _print_json(gateway.get_block(args.block))
    gateway.close()


def cmd_tx(args):
    gateway = build_gateway()
    _print_json(gateway.get_transaction(args.tx_hash))
    gateway.close()


def cmd_receipt(args):
    gateway = build_gateway()
    receipt = gateway.get_transaction_receipt(args.tx_hash)
    if receipt is None:
        print(f"Transaction {args.tx_hash} is still pending", file=sys.stderr)
        gateway.close()
        sys.exit(2)
    _print_json(receipt)
    gateway.close()


def cmd_logs(args):
    """Query logs over a block range in bounded steps."""
    gateway = build_gateway()
    filter_params = {}
    if args.address:
        filter_params["address"] = Web3.to_checksum_address(args.address)
    if args.topic:
        filter_params["topics"] = args.topic
    logs = gateway.query_logs(filter_params, args.from_block, args.to_block, args.step)
    _print_json(logs)
    gateway.close()


def cmd_serve(args):
    run_status_server()


def main(argv=None):
    """Entry point for the evm-failover CLI."""
    parser = argparse.ArgumentParser(
        prog="evm-failover",
        description="Resilient access to public EVM JSON-RPC endpoints",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    info_parser = subparsers.add_parser(
        "info", help="Show configuration and endpoints"
    )
    info_parser.set_defaults(func=cmd_info)

    probe_parser = subparsers.add_parser(
        "probe", help="Probe every configured endpoint"
    )
    probe_parser.set_defaults(func=cmd_probe)

    block_parser = subparsers.add_parser("block", help="Fetch a block")
    block_parser.add_argument(
        "block", type=_block_identifier, help="Block number or tag (latest, ...)"
    )
    block_parser.set_defaults(func=cmd_block)

    tx_parser = subparsers.add_parser("tx", help="Fetch a transaction")
    tx_parser.add_argument("tx_hash", help="Transaction hash (0x...)")
    tx_parser.set_defaults(func=cmd_tx)

    receipt_parser = subparsers.add_parser(
        "receipt", help="Poll for a transaction receipt"
    )
    receipt_parser.add_argument("tx_hash", help="Transaction hash (0x...)")
    receipt_parser.set_defaults(func=cmd_receipt)

    logs_parser = subparsers.add_parser("logs", help="Paginated log query")
    logs_parser.add_argument("--address", help="Contract address to filter on")
    logs_parser.add_argument(
        "--topic", action="append", help="Topic filter, repeat for positions"
    )
    logs_parser.add_argument("--from-block", required=True, type=int)
    logs_parser.add_argument("--to-block", required=True, type=int)
    logs_parser.add_argument(
        "--step", type=int, default=None, help="Blocks per sub-range"
    )
    logs_parser.set_defaults(func=cmd_logs)

    serve_parser = subparsers.add_parser(
        "serve", help="Run the status HTTP server"
    )
    serve_parser.set_defaults(func=cmd_serve)

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    try:
        args.func(args)
    except RPCAccessError as exc:
        print(f"Error: {exc.user_message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()

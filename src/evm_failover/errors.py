# -*- encoding: utf-8 -*-
"""
EVM Failover
evm_failover.errors module

Structured error taxonomy for the RPC access layer.

Every failure that crosses this layer carries an ErrorKind tag attached at
the point the failure is raised (see translate_exception), so retry
classification is a lookup on the tag instead of a match on message text.
"""

import concurrent.futures
import enum
import json
import logging

import requests
from web3 import exceptions as w3exc

logger = logging.getLogger(__name__)

NETWORK_UNAVAILABLE_MESSAGE = (
    "Network connection issues. Please check your internet connection "
    "and try again later."
)


class ErrorKind(enum.Enum):
    TIMEOUT = "timeout"
    NETWORK = "network"
    SERVER = "server"
    CALL_EXCEPTION = "call_exception"
    CONTRACT_REVERT = "contract_revert"
    NOT_FOUND = "not_found"
    INVALID_ARGUMENT = "invalid_argument"
    NO_HEALTHY_ENDPOINT = "no_healthy_endpoint"
    MAX_RETRIES = "max_retries"
    UNKNOWN = "unknown"


class Outcome(enum.Enum):
    """Verdict of a classifier on a failed attempt."""

    RETRYABLE = "retryable"
    FATAL = "fatal"
    PENDING = "pending"


# Kinds that implicate the endpoint rather than the call itself.
ENDPOINT_LEVEL_KINDS = frozenset({
    ErrorKind.TIMEOUT,
    ErrorKind.NETWORK,
    ErrorKind.SERVER,
    ErrorKind.CALL_EXCEPTION,
    ErrorKind.NO_HEALTHY_ENDPOINT,
})


class RPCAccessError(Exception):
    """Base class for every error raised by the RPC access layer.

    Attributes:
        kind: ErrorKind tag used for retry classification.
        endpoint: the Endpoint the failure was observed on, or None.
    """

    kind = ErrorKind.UNKNOWN

    def __init__(self, message, endpoint=None):
        super().__init__(message)
        self.endpoint = endpoint

    @property
    def user_message(self):
        """Message safe to show to an end user."""
        return str(self)


class RPCTimeout(RPCAccessError):
    kind = ErrorKind.TIMEOUT


class RPCNetworkError(RPCAccessError):
    kind = ErrorKind.NETWORK


class RPCServerError(RPCAccessError):
    kind = ErrorKind.SERVER


class CallException(RPCAccessError):
    """The node answered but the result did not match what the caller expected."""

    kind = ErrorKind.CALL_EXCEPTION


class ContractRevert(RPCAccessError):
    """The contract explicitly reverted. Never retried."""

    kind = ErrorKind.CONTRACT_REVERT

    def __init__(self, message, endpoint=None, reason=None):
        super().__init__(message, endpoint=endpoint)
        self.reason = reason


class ResultNotFound(RPCAccessError):
    kind = ErrorKind.NOT_FOUND


class InvalidArgument(RPCAccessError):
    kind = ErrorKind.INVALID_ARGUMENT


class UnclassifiedError(RPCAccessError):
    kind = ErrorKind.UNKNOWN


class NoHealthyEndpoint(RPCAccessError):
    """Selection exhausted every candidate without finding a healthy one."""

    kind = ErrorKind.NO_HEALTHY_ENDPOINT

    def __init__(self, message=None, candidates=0):
        super().__init__(
            message or f"No healthy RPC endpoint among {candidates} candidates"
        )
        self.candidates = candidates

    @property
    def user_message(self):
        return NETWORK_UNAVAILABLE_MESSAGE


class MaxRetriesExceeded(RPCAccessError):
    """Raised once the attempt budget is spent. Wraps the last failure."""

    kind = ErrorKind.MAX_RETRIES

    def __init__(self, description, attempts, last_error):
        super().__init__(
            f"{description} failed after {attempts} attempts: {last_error}",
            endpoint=getattr(last_error, "endpoint", None),
        )
        self.attempts = attempts
        self.last_error = last_error

    @property
    def user_message(self):
        return NETWORK_UNAVAILABLE_MESSAGE


class LogRangeError(RPCAccessError):
    """A log sub-range query failed; the whole pagination is aborted."""

    def __init__(self, from_block, to_block, cause):
        super().__init__(
            f"Log query failed for block range {from_block}-{to_block}: {cause}",
            endpoint=getattr(cause, "endpoint", None),
        )
        self.from_block = from_block
        self.to_block = to_block
        self.cause = cause

    @property
    def kind(self):
        return getattr(self.cause, "kind", ErrorKind.UNKNOWN)


class OperationCancelled(RPCAccessError):
    """The caller stopped waiting; the underlying call may still be running."""

    kind = ErrorKind.UNKNOWN


def _revert_reason(exc):
    message = getattr(exc, "message", None) or str(exc)
    prefix = "execution reverted: "
    if message.startswith(prefix):
        return message[len(prefix):]
    return message


def translate_exception(exc, endpoint=None):
    """Map a third-party failure onto the taxonomy.

    Args:
        exc: the exception raised by web3, requests or the transport.
        endpoint: Endpoint the call was issued against, if known.

    Returns:
        An RPCAccessError instance. Errors already in the taxonomy are
        returned unchanged.
    """
    if isinstance(exc, RPCAccessError):
        if exc.endpoint is None:
            exc.endpoint = endpoint
        return exc

    text = str(exc) or type(exc).__name__

    if isinstance(exc, (
        concurrent.futures.TimeoutError,
        requests.exceptions.Timeout,
        w3exc.TimeExhausted,
    )):
        return RPCTimeout(f"RPC request timed out: {text}", endpoint=endpoint)

    # ContractLogicError also derives from ValueError on some web3 releases,
    # so it has to be matched before the argument errors.
    if isinstance(exc, w3exc.ContractLogicError):
        return ContractRevert(
            f"Contract reverted: {text}",
            endpoint=endpoint,
            reason=_revert_reason(exc),
        )

    if isinstance(exc, w3exc.BadFunctionCallOutput):
        return CallException(f"Call exception: {text}", endpoint=endpoint)

    if isinstance(exc, (w3exc.TransactionNotFound, w3exc.BlockNotFound)):
        return ResultNotFound(text, endpoint=endpoint)

    if isinstance(exc, (requests.exceptions.ConnectionError,
                        w3exc.ProviderConnectionError)):
        return RPCNetworkError(f"Network error: {text}", endpoint=endpoint)

    if isinstance(exc, (requests.exceptions.HTTPError,
                        w3exc.TooManyRequests,
                        w3exc.Web3RPCError,
                        w3exc.BadResponseFormat)):
        return RPCServerError(f"Server error: {text}", endpoint=endpoint)

    # A non-JSON reply (HTML error page, proxy challenge) is a broken envelope.
    # requests.exceptions.JSONDecodeError derives from json.JSONDecodeError.
    if isinstance(exc, json.JSONDecodeError):
        return RPCServerError(f"Malformed RPC response: {text}", endpoint=endpoint)

    # Connection dropped mid-body and similar transport failures. URL errors
    # also derive from ValueError and stay argument errors.
    if (isinstance(exc, requests.exceptions.RequestException)
            and not isinstance(exc, ValueError)):
        return RPCNetworkError(f"Network error: {text}", endpoint=endpoint)

    if isinstance(exc, (w3exc.Web3ValidationError, ValueError, TypeError)):
        return InvalidArgument(f"Invalid argument: {text}", endpoint=endpoint)

    if isinstance(exc, OSError):
        return RPCNetworkError(f"Network error: {text}", endpoint=endpoint)

    return UnclassifiedError(text, endpoint=endpoint)


def classify_contract_call(error):
    """Retry endpoint-level failures; anything else is fatal."""
    if error.kind in ENDPOINT_LEVEL_KINDS:
        return Outcome.RETRYABLE
    return Outcome.FATAL


def classify_lookup(error):
    """Transaction and block lookups are idempotent reads: always retry."""
    return Outcome.RETRYABLE


def classify_receipt(error):
    """A missing receipt means the transaction is still pending."""
    if error.kind is ErrorKind.NOT_FOUND:
        return Outcome.PENDING
    return classify_contract_call(error)


def read_or_default(fn, default):
    """Run a display read, substituting default when the network is unavailable.

    Only for balance/history style reads. Write operations must let the
    terminal error propagate.
    """
    try:
        return fn()
    except (MaxRetriesExceeded, NoHealthyEndpoint) as exc:
        logger.warning("Read failed, using fallback value: %s", exc)
        return default

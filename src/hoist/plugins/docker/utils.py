"""Helpers for interpreting the Docker daemon responses."""
from typing import Iterable, Optional

from hoist.core.errors import FailureReason

_AUTH_MARKERS = (
    "unauthorized",
    "authentication required",
    "no basic auth credentials",
    "token has expired",
    "denied",
    "not authorized",
)
_QUOTA_MARKERS = (
    "toomanyrequests",
    "too many requests",
    "rate limit",
    "quota",
    "limit exceeded",
)
_CONFLICT_MARKERS = (
    "tag invalid",
    "cannot be overwritten",
    "immutable",
)
_NETWORK_MARKERS = (
    "connection refused",
    "no such host",
    "i/o timeout",
    "timeout",
    "connection reset",
    "tls handshake",
    "unexpected eof",
)


def classify_error(message: str) -> Optional[FailureReason]:
    """Maps an error message from the daemon or the registry to a failure reason.

    Arguments:
        message: the error message.

    Returns:
        The failure reason. None if the message is not recognised.
    """
    lowered = message.lower()

    for reason, markers in (
        (FailureReason.TAG_CONFLICT, _CONFLICT_MARKERS),
        (FailureReason.QUOTA_EXCEEDED, _QUOTA_MARKERS),
        (FailureReason.AUTH_EXPIRED, _AUTH_MARKERS),
        (FailureReason.NETWORK_ERROR, _NETWORK_MARKERS),
    ):
        if any(marker in lowered for marker in markers):
            return reason

    return None


def push_error(lines: Iterable[dict]) -> Optional[str]:
    """Returns the first error reported in the decoded output of a push."""
    for line in lines:
        if "error" in line:
            return str(line["error"])

        detail = line.get("errorDetail")
        if detail:
            return str(detail.get("message", detail))

    return None


def push_digest(lines: Iterable[dict]) -> Optional[str]:
    """Returns the manifest digest reported in the decoded output of a push."""
    digest = None

    for line in lines:
        aux = line.get("aux")
        if isinstance(aux, dict) and "Digest" in aux:
            digest = aux["Digest"]

    return digest


def build_log_tail(build_log: Iterable[dict], lines: int = 20) -> str:
    """Joins the last lines of a build log."""
    messages = []

    for chunk in build_log:
        message = chunk.get("stream") or chunk.get("error") or ""
        if message.strip():
            messages.append(message.rstrip())

    return "\n".join(messages[-lines:])

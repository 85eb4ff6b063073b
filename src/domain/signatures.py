from __future__ import annotations

import base64
import hashlib
import hmac
import logging
from typing import Any, Iterable
from urllib.parse import urlsplit, urlunsplit

from src.observability import log_event


_DEFAULT_PORTS = {"http": 80, "https": 443}


def _group_params(params: Any) -> dict[str, list[str]]:
    if params is None:
        return {}
    items: Iterable[tuple[str, Any]]
    if hasattr(params, "multi_items"):
        items = params.multi_items()
    elif hasattr(params, "items"):
        items = params.items()
    else:
        items = params
    grouped: dict[str, list[str]] = {}
    for key, value in items:
        values = value if isinstance(value, (list, tuple)) else [value]
        grouped.setdefault(str(key), []).extend(str(v) for v in values)
    return grouped


def compute_twilio_signature(auth_token: str, url: str, params: Any = None) -> str:
    """Twilio's X-Twilio-Signature: HMAC-SHA1 of URL + sorted key/value pairs, base64."""
    payload = url
    grouped = _group_params(params)
    for name in sorted(grouped):
        for value in sorted(set(grouped[name])):
            payload += name + value
    digest = hmac.new(auth_token.encode("utf-8"), payload.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def _split_port(netloc: str) -> tuple[str, str | None]:
    """Split ``netloc`` into everything before the port and the port itself.

    Userinfo (including any password) and IPv6 brackets stay untouched.
    """
    userinfo, at, hostport = netloc.rpartition("@")
    prefix = f"{userinfo}{at}"
    if hostport.endswith("]") or ":" not in hostport:
        return netloc, None
    host, _, port = hostport.rpartition(":")
    return f"{prefix}{host}", port


def _url_without_port(url: str) -> str:
    parts = urlsplit(url)
    host, port = _split_port(parts.netloc)
    if port is None:
        return url
    return urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))


def _url_with_port(url: str) -> str:
    parts = urlsplit(url)
    host, port = _split_port(parts.netloc)
    default_port = _DEFAULT_PORTS.get(parts.scheme)
    if port is not None or default_port is None or not host:
        return url
    return urlunsplit((parts.scheme, f"{host}:{default_port}", parts.path, parts.query, parts.fragment))


def _candidate_urls(url: str) -> list[str]:
    candidates = [url]
    for variant in (_url_without_port(url), _url_with_port(url)):
        if variant not in candidates:
            candidates.append(variant)
    return candidates


def verify_twilio_signature(
    auth_token: str | None,
    signature: str | None,
    url: str,
    params: Any = None,
    *,
    request_id: str | None = None,
) -> bool:
    if not auth_token or not signature:
        return False
    try:
        for candidate in _candidate_urls(url):
            expected = compute_twilio_signature(auth_token, candidate, params)
            if hmac.compare_digest(expected, signature):
                return True
    except Exception as exc:
        log_event(
            "twilio_signature_computation_failed",
            level=logging.WARNING,
            request_id=request_id,
            error=str(exc),
        )
        return False
    return False


def verify_brevo_request(*_args: Any, **_kwargs: Any) -> bool:
    # Brevo does not sign webhooks; callers rely on the network perimeter.
    return True

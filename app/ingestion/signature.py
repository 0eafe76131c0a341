"""
Webhook signature verification.

Deliveries carry three headers: ``webhook-id``, ``webhook-timestamp`` (unix
seconds) and ``webhook-signature``. The signature is a base64 HMAC-SHA256 of
``"{id}.{timestamp}.{body}"`` keyed by the decoded suffix of the shared secret
(``whsec_<base64>``). The signature header may hold several space separated
``version,value`` entries, e.g. during secret rotation.
"""

import base64
import binascii
import hashlib
import hmac
import time
from dataclasses import dataclass
from typing import Mapping, Optional

from app.config import settings

HEADER_ID = "webhook-id"
HEADER_TIMESTAMP = "webhook-timestamp"
HEADER_SIGNATURE = "webhook-signature"


@dataclass(frozen=True)
class WebhookHeaders:
    webhook_id: str
    timestamp: str
    signature: str


def parse_webhook_headers(headers: Mapping[str, Optional[str]]) -> Optional[WebhookHeaders]:
    """Pull the three signing headers out of a header mapping, or None if any is missing."""
    lowered = {k.lower(): v for k, v in headers.items()}
    webhook_id = lowered.get(HEADER_ID)
    timestamp = lowered.get(HEADER_TIMESTAMP)
    signature = lowered.get(HEADER_SIGNATURE)
    if not webhook_id or not timestamp or not signature:
        return None
    return WebhookHeaders(webhook_id=webhook_id, timestamp=timestamp, signature=signature)


def _secret_key(secret: str, prefix: str) -> Optional[bytes]:
    encoded = secret[len(prefix):] if prefix and secret.startswith(prefix) else secret
    try:
        return base64.b64decode(encoded)
    except (binascii.Error, ValueError):
        return None


def compute_signature(secret: str, webhook_id: str, timestamp: str, raw_body: str,
                      prefix: Optional[str] = None) -> str:
    """Expected base64 signature for a delivery."""
    key = _secret_key(secret, settings.WEBHOOK_SECRET_PREFIX if prefix is None else prefix)
    if key is None:
        raise ValueError("Webhook secret is not valid base64")
    signed_content = f"{webhook_id}.{timestamp}.{raw_body}".encode("utf-8")
    digest = hmac.new(key, signed_content, hashlib.sha256).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_webhook_signature(
    secret: str,
    headers: Optional[WebhookHeaders],
    raw_body: str,
    now: Optional[float] = None,
    replay_window_seconds: Optional[int] = None,
) -> bool:
    """
    True when the delivery is fresh and at least one signature entry matches.
    Pure predicate: no side effects.
    """
    if headers is None:
        return False
    if not headers.webhook_id or not headers.timestamp or not headers.signature:
        return False

    window = settings.WEBHOOK_REPLAY_WINDOW_SECONDS if replay_window_seconds is None else replay_window_seconds
    now_sec = int(time.time() if now is None else now)
    try:
        ts_sec = int(headers.timestamp)
    except ValueError:
        return False
    if abs(now_sec - ts_sec) > window:
        return False

    try:
        expected = compute_signature(secret, headers.webhook_id, headers.timestamp, raw_body)
    except ValueError:
        return False

    for entry in headers.signature.split(" "):
        _, sep, value = entry.partition(",")
        if not sep:
            continue
        if hmac.compare_digest(value.encode("ascii", "ignore"), expected.encode("ascii")):
            return True
    return False

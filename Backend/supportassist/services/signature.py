"""
Webhook Signature Verification

Providers sign callbacks with a timestamped HMAC-SHA256 over a canonical
string, but they disagree on header names and on how the canonical string is
built. Three conventions are accepted, tried in a fixed order:

1. Provider-native   ``openai-signature: t=<unix>,v1=<sig>[,v1=<sig>...]``
                     signs ``"{t}.{body}"`` with the raw secret.
2. Svix-branded      ``svix-id`` / ``svix-timestamp`` / ``svix-signature``
                     signs ``"{id}.{timestamp}.{body}"`` with the decoded
                     ``whsec_`` key.
3. Standard          ``webhook-id`` / ``webhook-timestamp`` / ``webhook-signature``
                     same canonical string and key as Svix.

A scheme whose headers are present but cannot be parsed, whose timestamp is
outside the tolerance window, or whose secret cannot be decoded rejects the
callback immediately. A plain digest mismatch falls through to the next present
scheme; the callback is rejected once every present scheme has mismatched.
"""
from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from supportassist.core.config import settings
from supportassist.core.logging_config import sanitize_headers, sanitize_secret

logger = logging.getLogger(__name__)

STANDARD_SECRET_PREFIX = "whsec_"

_VERSION_TOKEN = re.compile(r"^v\d+$")
_VERSIONED_VALUE = re.compile(r"^(v\d+)=(.+)$")


# ─── Custom Exceptions ───────────────────────────────────────────────────────

class WebhookVerificationError(ValueError):
    """Base class: the callback must be rejected."""
    reason = "verification failed"


class MissingSignatureError(WebhookVerificationError):
    reason = "missing signature"


class MalformedSignatureError(WebhookVerificationError):
    reason = "malformed signature"


class InvalidSecretError(WebhookVerificationError):
    reason = "invalid secret"


class StaleTimestampError(WebhookVerificationError):
    reason = "stale timestamp"


class SignatureMismatchError(WebhookVerificationError):
    reason = "verification failed"


class InvalidPayloadError(WebhookVerificationError):
    reason = "invalid payload"


# ─── Header Helpers ──────────────────────────────────────────────────────────

def normalise_headers(headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Lower-case header names; multi-valued headers collapse to their first value."""
    normalised: Dict[str, Any] = {}
    for key, value in (headers or {}).items():
        if isinstance(value, (list, tuple)):
            value = value[0] if value else None
        normalised[str(key).lower()] = value
    return normalised


def first_header(headers: Mapping[str, Any], names: Sequence[str]) -> Optional[str]:
    for name in names:
        value = headers.get(name)
        if value:
            return str(value)
    return None


def _as_bytes(raw_body: bytes | str) -> bytes:
    return raw_body if isinstance(raw_body, bytes) else raw_body.encode("utf-8")


def _parse_timestamp(value: Optional[str]) -> int:
    if value is None:
        raise MalformedSignatureError("Webhook timestamp header is missing.")
    try:
        return int(str(value).strip())
    except ValueError:
        raise MalformedSignatureError(f"Webhook timestamp is not an integer: {value!r}")


def _check_recency(timestamp: int, now: float, tolerance: int, scheme: str) -> None:
    drift = abs(int(now) - timestamp)
    logger.debug(f"{scheme}: timestamp={timestamp} now={int(now)} drift={drift}s tolerance={tolerance}s")
    if drift > tolerance:
        raise StaleTimestampError(f"{scheme} webhook timestamp outside the allowed tolerance ({drift}s).")


# ─── Signature Lists ─────────────────────────────────────────────────────────

def parse_provider_signature(header: str) -> Tuple[int, List[str]]:
    """Parse ``t=<unix>,v1=<sig>,...`` into the timestamp and candidate signatures."""
    timestamp: Optional[str] = None
    signatures: List[str] = []
    for part in header.split(","):
        key, sep, value = part.strip().partition("=")
        if not sep or not key or not value:
            continue
        if key == "t":
            timestamp = value
        elif key.startswith("v"):
            signatures.append(value)
    if timestamp is None or not signatures:
        raise MalformedSignatureError("Provider signature header lacks a timestamp or versioned signatures.")
    return _parse_timestamp(timestamp), signatures


def parse_versioned_signatures(header: str) -> List[str]:
    """
    Collect signatures from a versioned list.

    Accepts ``v1=<sig>`` entries as well as ``v1,<sig>`` / ``v1 <sig>`` pairs,
    separated by commas and/or whitespace, in any mix.
    """
    tokens = [t for t in re.split(r"[\s,]+", header.strip()) if t]
    signatures: List[str] = []
    index = 0
    while index < len(tokens):
        token = tokens[index]
        versioned = _VERSIONED_VALUE.match(token)
        if versioned:
            signatures.append(versioned.group(2))
        elif _VERSION_TOKEN.match(token) and index + 1 < len(tokens):
            following = tokens[index + 1]
            if not _VERSION_TOKEN.match(following) and not _VERSIONED_VALUE.match(following):
                signatures.append(following)
                index += 1
        index += 1
    if not signatures:
        raise MalformedSignatureError("Signature header contains no version-prefixed values.")
    return signatures


# ─── Digest Comparison ───────────────────────────────────────────────────────

def _decode_base64(signature: str) -> Optional[bytes]:
    try:
        return base64.b64decode(signature, validate=True)
    except (binascii.Error, ValueError):
        return None


def _decode_hex(signature: str) -> Optional[bytes]:
    try:
        return bytes.fromhex(signature)
    except ValueError:
        return None


def _decode_candidate(signature: str, expected_length: int, decoders: Sequence[Callable[[str], Optional[bytes]]]) -> Optional[bytes]:
    for decode in decoders:
        decoded = decode(signature)
        if decoded is not None and len(decoded) == expected_length:
            return decoded
    return None


def matches_signature(
    key: bytes,
    message: bytes,
    signatures: Sequence[str],
    decoders: Sequence[Callable[[str], Optional[bytes]]] = (_decode_base64, _decode_hex),
) -> bool:
    """True when any candidate equals HMAC-SHA256(key, message), compared in constant time."""
    computed = hmac.new(key, message, hashlib.sha256).digest()
    matched = False
    for signature in signatures:
        provided = _decode_candidate(signature, len(computed), decoders)
        if provided is None:
            logger.warning("Failed to decode a provided signature candidate.")
            continue
        # No early exit: every candidate is compared.
        if hmac.compare_digest(provided, computed):
            matched = True
    return matched


def derive_standard_secret_key(secret: str) -> bytes:
    """``whsec_<base64>`` → raw HMAC key bytes."""
    trimmed = secret[len(STANDARD_SECRET_PREFIX):] if secret.startswith(STANDARD_SECRET_PREFIX) else secret
    try:
        key = base64.b64decode(trimmed, validate=True)
    except (binascii.Error, ValueError):
        raise InvalidSecretError("Webhook secret is not valid base64 after the whsec_ prefix.")
    if not key:
        raise InvalidSecretError("Decoded webhook secret is empty.")
    return key


# ─── Schemes ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class SignatureScheme:
    """One header convention. ``verify`` returns False only on a digest mismatch."""
    name: str
    signature_headers: Tuple[str, ...]

    def is_present(self, headers: Mapping[str, Any]) -> bool:
        return first_header(headers, self.signature_headers) is not None

    def verify(self, body: bytes, headers: Mapping[str, Any], secret: str, now: float, tolerance: int) -> bool:
        raise NotImplementedError


@dataclass(frozen=True)
class ProviderNativeScheme(SignatureScheme):
    def verify(self, body, headers, secret, now, tolerance):
        timestamp, signatures = parse_provider_signature(first_header(headers, self.signature_headers))
        _check_recency(timestamp, now, tolerance, self.name)
        message = f"{timestamp}.".encode("utf-8") + body
        return matches_signature(secret.encode("utf-8"), message, signatures)


@dataclass(frozen=True)
class IdTimestampScheme(SignatureScheme):
    """Svix and Standard Webhooks: ``"{id}.{timestamp}.{body}"`` under a ``whsec_`` key."""
    id_headers: Tuple[str, ...] = ()
    timestamp_headers: Tuple[str, ...] = ()
    decoders: Tuple[Callable[[str], Optional[bytes]], ...] = (_decode_base64, _decode_hex)

    def verify(self, body, headers, secret, now, tolerance):
        signatures = parse_versioned_signatures(first_header(headers, self.signature_headers))
        delivery_id = first_header(headers, self.id_headers)
        timestamp_header = first_header(headers, self.timestamp_headers)
        if not delivery_id or not timestamp_header:
            raise MalformedSignatureError(f"{self.name} webhook is missing its id or timestamp header.")
        timestamp = _parse_timestamp(timestamp_header)
        _check_recency(timestamp, now, tolerance, self.name)
        key = derive_standard_secret_key(secret)
        message = f"{delivery_id}.{timestamp_header.strip()}.".encode("utf-8") + body
        return matches_signature(key, message, signatures, self.decoders)


# Closed set, fixed priority order.
SCHEMES: Tuple[SignatureScheme, ...] = (
    ProviderNativeScheme(
        name="Provider",
        signature_headers=("x-openai-signature", "openai-signature"),
    ),
    IdTimestampScheme(
        name="Svix",
        signature_headers=("svix-signature",),
        id_headers=("svix-id",),
        timestamp_headers=("svix-timestamp", "x-openai-timestamp", "openai-timestamp"),
        decoders=(_decode_base64,),
    ),
    IdTimestampScheme(
        name="Standard",
        signature_headers=("webhook-signature",),
        id_headers=("webhook-id",),
        timestamp_headers=("webhook-timestamp", "svix-timestamp", "x-openai-timestamp", "openai-timestamp"),
    ),
)


# ─── Entry Point ─────────────────────────────────────────────────────────────

def verify_signature(
    raw_body: bytes | str,
    headers: Mapping[str, Any],
    secret: str,
    now: Optional[float] = None,
    tolerance_seconds: Optional[int] = None,
) -> str:
    """
    Authenticate a callback. Returns the name of the scheme that verified it.

    Raises:
        WebhookVerificationError: any subclass, see module docstring.
    """
    headers = normalise_headers(headers)
    body = _as_bytes(raw_body)
    now = time.time() if now is None else now
    tolerance = settings.SIGNATURE_TOLERANCE_SECONDS if tolerance_seconds is None else tolerance_seconds

    logger.debug(
        f"Webhook verification starting: body={len(body)} bytes "
        f"headers={sanitize_headers(headers)} secret={sanitize_secret(secret)}"
    )

    present = [scheme for scheme in SCHEMES if scheme.is_present(headers)]
    if not present:
        logger.error("No webhook signature headers found.")
        raise MissingSignatureError("Missing webhook signature headers.")

    for scheme in present:
        if scheme.verify(body, headers, secret, now, tolerance):
            logger.info(f"Webhook signature verified with {scheme.name} scheme.")
            return scheme.name
        logger.warning(f"{scheme.name} signature did not match.")

    logger.error("All signature verification methods failed.")
    raise SignatureMismatchError("Webhook signature verification failed.")


def unwrap_webhook_event(
    raw_body: bytes | str,
    headers: Mapping[str, Any],
    secret: str,
    now: Optional[float] = None,
    tolerance_seconds: Optional[int] = None,
) -> Dict[str, Any]:
    """Verify the callback, then parse the exact body that was verified."""
    verify_signature(raw_body, headers, secret, now=now, tolerance_seconds=tolerance_seconds)
    try:
        event = json.loads(_as_bytes(raw_body))
    except (ValueError, UnicodeDecodeError) as e:
        raise InvalidPayloadError(f"Invalid webhook payload: {e}")
    if not isinstance(event, dict):
        raise InvalidPayloadError("Webhook payload is not a JSON object.")
    data = event.get("data") if isinstance(event.get("data"), dict) else {}
    logger.info(f"Webhook payload parsed: type={event.get('type')} id={data.get('id')} status={data.get('status')}")
    return event

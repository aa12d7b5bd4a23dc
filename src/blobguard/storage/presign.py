"""HMAC-SHA256 signed URLs for local backends.

The in-memory and filesystem backends have no native URL signing, so they issue
self-verifying URLs of the form:

    {scheme}://{container}/{name}?expires=<unix>&perm=<flags>&sig=<hex>

Canonical string: "{container}/{name}.{expires}.{perm}"
Signature: hex digest of HMAC-SHA256(secret, canonical_string)

SECURITY: Never log the secret or the signature.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, quote, unquote, urlsplit

from blobguard.storage.models import StoragePermission


def generate_signing_secret() -> bytes:
    """Return a fresh per-process signing secret."""
    return secrets.token_bytes(32)


def _canonical(container: str, name: str, expires: int, perm: int) -> bytes:
    return f"{container}/{name}.{expires}.{perm}".encode()


def compute_url_signature(
    secret: bytes, container: str, name: str, expires: int, perm: int
) -> str:
    """Compute the hex HMAC-SHA256 signature for a local URL."""
    return hmac.new(
        key=secret,
        msg=_canonical(container, name, expires, perm),
        digestmod=hashlib.sha256,
    ).hexdigest()


def sign_local_url(
    scheme: str,
    secret: bytes,
    container: str,
    name: str,
    ttl: timedelta,
    permissions: StoragePermission,
    *,
    now: datetime | None = None,
) -> str:
    """Build a signed, time-limited URL for an object.

    Args:
        scheme: URL scheme identifying the backend ("memory", "file").
        secret: HMAC secret owned by the backend.
        container: Container name.
        name: Object name.
        ttl: Lifetime of the URL (must be positive).
        permissions: Capabilities granted by the URL.
        now: Reference time (defaults to current UTC time).

    Returns:
        The signed URL.

    Raises:
        ValueError: If ttl is not positive.
    """
    if ttl <= timedelta(0):
        raise ValueError("ttl must be positive")
    issued = now or datetime.now(UTC)
    expires = int((issued + ttl).timestamp())
    perm = permissions.value
    signature = compute_url_signature(secret, container, name, expires, perm)
    return (
        f"{scheme}://{quote(container, safe='')}/{quote(name, safe='/')}"
        f"?expires={expires}&perm={perm}&sig={signature}"
    )


def verify_local_url(
    url: str,
    secret: bytes,
    required: StoragePermission = StoragePermission.READ,
    *,
    now: datetime | None = None,
) -> bool:
    """Verify a URL produced by sign_local_url.

    Returns:
        True if the signature is valid, the URL has not expired and it grants
        every capability in ``required``; False otherwise.
    """
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    try:
        expires = int(query["expires"][0])
        perm = int(query["perm"][0])
        signature = query["sig"][0]
    except (KeyError, IndexError, ValueError):
        return False

    container = unquote(parts.netloc)
    name = unquote(parts.path.lstrip("/"))
    expected = compute_url_signature(secret, container, name, expires, perm)
    if not hmac.compare_digest(expected, signature):
        return False

    current = now or datetime.now(UTC)
    if current.timestamp() >= expires:
        return False
    return (StoragePermission(perm) & required) == required

"""Access policy checks: file extensions, content types and client addresses.

Deny-lists always take precedence over allow-lists; an empty allow-list allows
everything not denied.
"""

from __future__ import annotations

import ipaddress
import logging
from collections.abc import Iterable
from pathlib import PurePosixPath
from typing import Final

from blobguard.config import normalize_extension

logger = logging.getLogger(__name__)

ALLOWED_CONTENT_TYPES: Final[tuple[str, ...]] = (
    "application/json",
    "application/xml",
    "application/zip",
    "application/pdf",
    "text/plain",
    "text/csv",
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
)

IpNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def file_extension(name: str) -> str:
    """Return the lower-cased final extension of an object name ("" if none)."""
    return normalize_extension(PurePosixPath(name).suffix)


def is_extension_allowed(
    name: str,
    allowed: Iterable[str],
    blocked: Iterable[str],
) -> bool:
    """Check an object name against the extension deny-list, then allow-list."""
    extension = file_extension(name)
    if extension in set(blocked):
        return False
    allowed_set = set(allowed)
    if allowed_set:
        return extension in allowed_set
    return True


def is_content_type_allowed(content_type: str) -> bool:
    """Return True if the content type starts with an allowed media type."""
    lowered = content_type.strip().lower()
    return any(lowered.startswith(allowed) for allowed in ALLOWED_CONTENT_TYPES)


def parse_ip_rules(rules: Iterable[str]) -> tuple[IpNetwork, ...]:
    """Parse exact addresses and CIDR ranges into networks.

    Raises:
        ValueError: If a rule is neither an address nor a network.
    """
    return tuple(ipaddress.ip_network(rule.strip(), strict=False) for rule in rules)


class IpAccessPolicy:
    """Allow/deny policy over client addresses (exact or CIDR rules)."""

    def __init__(self, allowed: Iterable[str] = (), blocked: Iterable[str] = ()) -> None:
        self._allowed = parse_ip_rules(allowed)
        self._blocked = parse_ip_rules(blocked)

    @staticmethod
    def _matches(address: str, networks: tuple[IpNetwork, ...]) -> bool:
        ip = ipaddress.ip_address(address)
        return any(ip.version == net.version and ip in net for net in networks)

    def is_blocked(self, address: str) -> bool:
        """Return True if the address is on the deny-list (or unparseable)."""
        try:
            return self._matches(address, self._blocked)
        except ValueError:
            logger.warning("Unparseable client address rejected: %s", address)
            return True

    def is_allowed(self, address: str) -> bool:
        """Return True if the address passes the deny-list and the allow-list."""
        if self.is_blocked(address):
            return False
        if not self._allowed:
            return True
        return self._matches(address, self._allowed)

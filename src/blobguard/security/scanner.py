"""Signature and marker based content scanner.

The scanner is stateless: a scan is a pure function of the payload bytes. Exact
signature tokens are matched case-sensitively and classified as malware;
script-like markers are matched case-insensitively and classified as suspicious
content. Signatures are checked first and the first match wins.
"""

from __future__ import annotations

import logging
from typing import Final

from blobguard.security.models import ScanResult, ThreatType
from blobguard.storage.service import Payload

logger = logging.getLogger(__name__)

EICAR_THREAT_NAME: Final[str] = "EICAR-Test-Signature"

SIGNATURES: Final[tuple[tuple[bytes, str], ...]] = (
    (
        rb"X5O!P%@AP[4\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*",
        EICAR_THREAT_NAME,
    ),
    (b"EICAR-STANDARD-ANTIVIRUS-TEST-FILE", EICAR_THREAT_NAME),
)

SUSPICIOUS_MARKERS: Final[tuple[bytes, ...]] = (
    b"<script",
    b"javascript:",
    b"eval(",
    b"vbscript:",
    b"document.cookie",
)

DEFAULT_MAX_SCAN_BYTES: Final[int] = 100 * 1024 * 1024
_CHUNK_SIZE: Final[int] = 1024 * 1024


class ContentScanner:
    """Scans payloads for known signatures and suspicious markers."""

    def __init__(self, max_scan_bytes: int = DEFAULT_MAX_SCAN_BYTES) -> None:
        if max_scan_bytes <= 0:
            raise ValueError("max_scan_bytes must be positive")
        self._max_scan_bytes = max_scan_bytes

    @property
    def max_scan_bytes(self) -> int:
        return self._max_scan_bytes

    def _read(self, content: Payload) -> tuple[bytes, bool]:
        """Read up to the scan cap from the start and rewind the stream to 0."""
        if isinstance(content, (bytes, bytearray, memoryview)):
            data = bytes(content)
            return data[: self._max_scan_bytes], len(data) > self._max_scan_bytes

        try:
            content.seek(0)
            chunks: list[bytes] = []
            remaining = self._max_scan_bytes
            while remaining > 0:
                chunk = content.read(min(_CHUNK_SIZE, remaining))
                if not chunk:
                    break
                chunks.append(chunk)
                remaining -= len(chunk)
            truncated = remaining == 0 and bool(content.read(1))
        finally:
            content.seek(0)
        return b"".join(chunks), truncated

    def scan(self, content: Payload, object_name: str) -> ScanResult:
        """Scan a payload.

        Args:
            content: Bytes or a seekable binary stream; a stream is read from
                its start and left positioned at the start.
            object_name: Name recorded in the result.

        Returns:
            ScanResult; unclean results carry a threat name and type.
        """
        data, truncated = self._read(content)

        for signature, threat_name in SIGNATURES:
            if signature in data:
                logger.warning("Signature match: name=%s threat=%s", object_name, threat_name)
                return ScanResult(
                    object_name=object_name,
                    is_clean=False,
                    threat_name=threat_name,
                    threat_type=ThreatType.MALWARE,
                    bytes_scanned=len(data),
                    truncated=truncated,
                )

        lowered = data.lower()
        for marker in SUSPICIOUS_MARKERS:
            if marker in lowered:
                marker_text = marker.decode("ascii")
                logger.warning("Suspicious marker: name=%s marker=%s", object_name, marker_text)
                return ScanResult(
                    object_name=object_name,
                    is_clean=False,
                    threat_name=f"Suspicious marker {marker_text}",
                    threat_type=ThreatType.SUSPICIOUS_CONTENT,
                    bytes_scanned=len(data),
                    truncated=truncated,
                )

        if truncated:
            logger.info(
                "Scan truncated: name=%s scanned=%d cap=%d",
                object_name,
                len(data),
                self._max_scan_bytes,
            )
        return ScanResult(
            object_name=object_name,
            is_clean=True,
            bytes_scanned=len(data),
            truncated=truncated,
        )

"""Codec for the Feed Source's length-prefixed message framing.

A frame is one or more ``~m~<decimal length>~m~<payload>`` records glued
together. Payloads are JSON documents, or ``~h~<n>`` heartbeats that the
client must echo back unchanged.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from typing import Any

logger = logging.getLogger(__name__)

MARKER = "~m~"
HEARTBEAT_PREFIX = "~h~"

_HEADER_RE = re.compile(r"~m~(\d+)~m~")


def encode_frame(payload: str) -> str:
    """Wrap a single payload in the length-prefixed envelope."""
    return f"{MARKER}{len(payload)}{MARKER}{payload}"


def encode_message(method: str, params: list[Any]) -> str:
    """Build a framed request such as ``quote_add_symbols``."""
    payload = json.dumps({"m": method, "p": params}, separators=(",", ":"))
    return encode_frame(payload)


def decode_frames(buffer: str) -> list[str]:
    """Split a buffer into its payloads.

    Scanning resumes after each payload, so a record whose declared length
    runs past the end of the buffer is dropped without losing the records
    before it. Text that is not a header is skipped until the next header.
    """
    payloads: list[str] = []
    pos = 0
    while True:
        match = _HEADER_RE.search(buffer, pos)
        if match is None:
            break
        length = int(match.group(1))
        start = match.end()
        end = start + length
        if end > len(buffer):
            logger.debug("Truncated frame: want %d chars, have %d", length, len(buffer) - start)
            break
        payloads.append(buffer[start:end])
        pos = end
    return payloads


def is_heartbeat(payload: str) -> bool:
    return payload.startswith(HEARTBEAT_PREFIX)


def iter_messages(buffer: str) -> Iterator[dict]:
    """Yield every well-formed JSON object in a frame.

    Heartbeats, empty payloads, and payloads that fail to parse are skipped
    individually; they never abort the rest of the frame.
    """
    for payload in decode_frames(buffer):
        if not payload or is_heartbeat(payload):
            continue
        try:
            message = json.loads(payload)
        except ValueError:
            logger.debug("Skipping malformed payload: %.80r", payload)
            continue
        if isinstance(message, dict):
            yield message

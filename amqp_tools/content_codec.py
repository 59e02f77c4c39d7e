from __future__ import annotations

"""Conversion between AMQP message bodies and JSON-friendly values.

Consumed bodies are turned into text according to their ``contentType`` and
``contentEncoding`` properties, and ``contentEncoding`` is rewritten to
describe the text that ends up in the envelope. Published values always go
out as UTF-8 JSON.
"""

import base64
import json
import re
from typing import Any, Dict, Optional

from amqp_tools.errors import InputError

JSON_CONTENT_TYPE = "application/json"
OCTET_STREAM_CONTENT_TYPE = "application/octet-stream"
PUBLISH_CONTENT_ENCODING = "utf-8"
DEFAULT_DELIVERY_MODE = 1
# Deepest indentation JSON.stringify honours
MAX_INDENTATION = 10

_JSON_PREFIX = re.compile(r"^application/json", re.IGNORECASE)
_JSON_EXACT = re.compile(r"^application/json$", re.IGNORECASE)
_TEXT_TYPE = re.compile(r"^text/", re.IGNORECASE)
_NOT_ALNUM = re.compile(r"[^a-z0-9]")


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def load_json(text: str) -> Any:
    """Parse *text* as strict JSON, without NaN or Infinity."""
    return json.loads(text, parse_constant=_reject_constant)


def normalize_encoding(content_encoding: Optional[str]) -> str:
    return _NOT_ALNUM.sub("", (content_encoding or "").lower())


def _to_ascii(body: bytes) -> str:
    # 7-bit only, the high bit of every byte is dropped
    return bytes(b & 0x7F for b in body).decode("ascii")


def _to_utf16(body: bytes) -> str:
    usable = len(body) - len(body) % 2
    return body[:usable].decode("utf-16-le", errors="replace")


def _to_base64(body: bytes) -> str:
    return base64.b64encode(body).decode("ascii")


def decode_content(body: bytes, properties: Dict[str, Any]) -> str:
    """Turn *body* into text, recording the resulting encoding.

    ``properties["contentEncoding"]`` is overwritten in place with one of
    ``utf8``, ``ascii``, ``hex``, ``base64`` or ``base64,<original>``. Never
    raises for any body.
    """
    encoding = normalize_encoding(properties.get("contentEncoding"))
    content_type = properties.get("contentType") or ""

    if not encoding and _JSON_PREFIX.match(content_type):
        properties["contentEncoding"] = "utf8"
        return body.decode("utf-8", errors="replace")

    if encoding == "hex":
        properties["contentEncoding"] = "hex"
        return _to_ascii(body)

    if encoding == "ascii":
        properties["contentEncoding"] = "ascii"
        return _to_ascii(body)

    if encoding == "utf8":
        properties["contentEncoding"] = "utf8"
        return body.decode("utf-8", errors="replace")

    if encoding in ("utf16le", "ucs2"):
        properties["contentEncoding"] = "utf8"
        return _to_utf16(body)

    if encoding == "binary":
        properties["contentEncoding"] = "base64"
        return _to_base64(body)

    # Already base64 text, do not encode twice
    if encoding == "base64":
        properties["contentEncoding"] = "base64"
        return _to_ascii(body)

    properties["contentEncoding"] = f"base64,{encoding}" if encoding else "base64"
    return _to_base64(body)


def decode_body(body: bytes, properties: Dict[str, Any]) -> Any:
    """Decode *body* into the value stored as the envelope ``content``.

    JSON bodies are parsed when possible, falling back to the raw text.
    Bodies of unknown type are kept as text and labelled as octet streams.
    """
    text = decode_content(body, properties)
    content_type = properties.get("contentType")

    if content_type and _JSON_EXACT.match(content_type):
        try:
            return load_json(text)
        except ValueError:
            return text

    if content_type and _TEXT_TYPE.match(content_type):
        return text

    if content_type is None:
        properties["contentType"] = OCTET_STREAM_CONTENT_TYPE
    return text


def create_envelope(base: Dict[str, Any], message) -> Dict[str, Any]:
    """Build the JSON envelope of an inbound message.

    *base* carries ``date`` and ``queue``; the message contributes its
    ``fields`` and ``properties`` and the decoded ``content``.
    """
    envelope = dict(base)
    envelope["fields"] = dict(message.fields)
    envelope["properties"] = dict(message.properties)
    envelope["content"] = decode_body(message.content, envelope["properties"])
    return envelope


def dump_json(value: Any, indentation: int = 0) -> str:
    if indentation:
        indent = min(indentation, MAX_INDENTATION)
        return json.dumps(value, indent=indent, ensure_ascii=False, allow_nan=False)
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def encode_content(value: Any) -> bytes:
    return dump_json(value).encode("utf-8")


def _delivery_mode(value: Any) -> int:
    if not value:
        return DEFAULT_DELIVERY_MODE
    if isinstance(value, bool):
        raise InputError(f"Invalid deliveryMode: {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise InputError(f"Invalid deliveryMode: {value!r}") from e


def publish_properties(
    properties: Optional[Dict[str, Any]], default_correlation_id: str = ""
) -> Dict[str, Any]:
    """Properties for republishing a value as JSON.

    The envelope's own ``correlationId`` wins over the configured default,
    which is only applied when non-empty.
    """
    properties = properties if isinstance(properties, dict) else {}

    outgoing = {
        "contentType": JSON_CONTENT_TYPE,
        "contentEncoding": PUBLISH_CONTENT_ENCODING,
        "deliveryMode": _delivery_mode(properties.get("deliveryMode")),
    }
    if properties.get("headers"):
        outgoing["headers"] = properties["headers"]

    correlation_id = properties.get("correlationId")
    if correlation_id:
        outgoing["correlationId"] = str(correlation_id)
    elif default_correlation_id:
        outgoing["correlationId"] = default_correlation_id

    return outgoing

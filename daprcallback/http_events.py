"""Decoding of CloudEvents envelopes delivered to HTTP topic routes."""

from __future__ import annotations

import base64
import binascii
import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Union

from daprcallback.common import ServiceError

_DECODER = json.JSONDecoder()
_WHITESPACE = re.compile(r"[ \t\n\r]*")

_STRING_FIELDS = {
    "id": "id",
    "specversion": "spec_version",
    "type": "type",
    "source": "source",
    "datacontenttype": "data_content_type",
    "data_base64": "data_base64",
    "subject": "subject",
    "topic": "topic",
    "pubsubname": "pubsub_name",
}


def _skip(text: str, pos: int) -> int:
    return _WHITESPACE.match(text, pos).end()


def _decode_at(text: str, pos: int) -> tuple[Any, int]:
    try:
        return _DECODER.raw_decode(text, pos)
    except json.JSONDecodeError as exc:
        raise ServiceError(f"invalid event JSON: {exc}") from exc


def _object_members(text: str) -> list[tuple[str, str]]:
    """Split a JSON object into its keys and the raw text of each value."""
    pos = _skip(text, 0)
    if not text.startswith("{", pos):
        raise ServiceError("invalid event JSON: expected an object")
    pos = _skip(text, pos + 1)
    members: list[tuple[str, str]] = []
    if text.startswith("}", pos):
        pos += 1
    else:
        while True:
            if not text.startswith('"', pos):
                raise ServiceError(f"invalid event JSON: expected a key at offset {pos}")
            key, pos = _decode_at(text, pos)
            pos = _skip(text, pos)
            if not text.startswith(":", pos):
                raise ServiceError(f"invalid event JSON: expected ':' at offset {pos}")
            pos = _skip(text, pos + 1)
            start = pos
            _, pos = _decode_at(text, pos)
            members.append((key, text[start:pos]))
            pos = _skip(text, pos)
            if text.startswith(",", pos):
                pos = _skip(text, pos + 1)
            elif text.startswith("}", pos):
                pos += 1
                break
            else:
                raise ServiceError(
                    f"invalid event JSON: expected ',' or '}}' at offset {pos}"
                )
    if _skip(text, pos) != len(text):
        raise ServiceError("invalid event JSON: data after top-level value")
    return members


def _loads(raw: Union[bytes, str]) -> tuple[bool, Any]:
    try:
        return True, json.loads(raw)
    except ValueError:
        return False, None


def _b64decode(text: str) -> Optional[bytes]:
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError):
        return None


@dataclass
class TopicEventEnvelope:
    """A CloudEvents envelope whose ``data`` is kept as the raw JSON text."""

    id: str = ""
    spec_version: str = ""
    type: str = ""
    source: str = ""
    data_content_type: str = ""
    data: bytes = b""
    data_base64: str = ""
    subject: str = ""
    topic: str = ""
    pubsub_name: str = ""

    @classmethod
    def from_json(cls, body: Union[bytes, str]) -> "TopicEventEnvelope":
        """Parse an envelope; field names match case-insensitively."""
        if isinstance(body, (bytes, bytearray)):
            text = bytes(body).decode("utf-8", errors="replace")
        else:
            text = body
        values: dict[str, str] = {}
        data = b""
        for key, raw in _object_members(text):
            name = key.lower()
            if name == "data":
                data = raw.encode("utf-8")
                continue
            attr = _STRING_FIELDS.get(name)
            if attr is None:
                continue
            value = json.loads(raw)
            if value is None:
                continue
            if not isinstance(value, str):
                raise ServiceError(
                    f"invalid event JSON: field {key!r} must be a string"
                )
            values[attr] = value
        return cls(data=data, **values)

    def get_data(self) -> tuple[Any, bytes]:
        """Return the decoded payload and its raw bytes.

        JSON in ``data`` is decoded; a string holding escaped or base64
        encoded JSON is unwrapped. Otherwise ``data_base64`` is decoded,
        and parsed further when the content type is JSON.
        """
        if self.data:
            raw = self.data
            ok, value = _loads(raw)
            if not ok:
                return raw, raw
            if isinstance(value, str):
                ok, inner = _loads(value)
                if ok:
                    return inner, raw
                decoded = _b64decode(value)
                if decoded is not None:
                    ok, inner = _loads(decoded)
                    if ok:
                        return inner, raw
            return value, raw
        if self.data_base64:
            raw = _b64decode(self.data_base64)
            if raw is None:
                return None, b""
            if self.data_content_type == "application/json":
                ok, value = _loads(raw)
                if ok:
                    return value, raw
            return raw, raw
        return None, b""
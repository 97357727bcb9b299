"""msgspec JSON codec that never emits redacted model fields."""

from __future__ import annotations

from typing import Any

import msgspec
from msgspec import structs

_encoder = msgspec.json.Encoder()
_decoder = msgspec.json.Decoder()


def _strip_redacted(value: Any) -> Any:
    from .orm import Model

    if isinstance(value, Model):
        info = getattr(type(value), "__model_info__", None)
        hidden = info.redacted_fields if info is not None else frozenset()
        return {name: _strip_redacted(item) for name, item in structs.asdict(value).items() if name not in hidden}
    if isinstance(value, dict):
        return {key: _strip_redacted(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_strip_redacted(item) for item in value]
    return value


def json_encode(value: Any) -> bytes:
    return _encoder.encode(_strip_redacted(value))


def json_decode(data: bytes | str) -> Any:
    return _decoder.decode(data)


__all__ = ["json_decode", "json_encode"]

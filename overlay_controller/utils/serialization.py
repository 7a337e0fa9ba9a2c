"""Utility helpers for rendering roster payloads."""

from __future__ import annotations

from typing import Any

import orjson


def pretty_json(payload: Any) -> bytes:
    """Return *payload* as UTF-8 JSON indented with two spaces."""

    return orjson.dumps(payload, option=orjson.OPT_INDENT_2)


__all__ = ["pretty_json"]

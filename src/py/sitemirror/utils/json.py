from typing import Any
import json as basejson
from .primitives import asPrimitive


def json(value: Any, *, indent: int | None = None) -> bytes:
	"""Converts the value to UTF-8 encoded JSON."""
	return basejson.dumps(
		asPrimitive(value), indent=indent, ensure_ascii=False
	).encode("utf8")


# EOF

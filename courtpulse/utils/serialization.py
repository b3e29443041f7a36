"""JSON output for consumers."""

from typing import Any

import orjson


def dumps(value: Any) -> bytes:
    """
    Serialize a model (anything with to_dict), a list of models or plain data.

    Keys come out in the camelCase shape presentation layers expect.
    """
    return orjson.dumps(_plain(value))


def _plain(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value

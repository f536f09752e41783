from __future__ import annotations

from typing import Any


class MalformedResponseError(ValueError):
    pass


def records_at(doc: Any, *path: str) -> list:
    node = doc
    walked: list[str] = []
    for key in path:
        walked.append(key)
        if not isinstance(node, dict):
            raise MalformedResponseError(
                f"expected object at {'.'.join(walked[:-1]) or '<root>'}, got {type(node).__name__}"
            )
        node = node.get(key)
    if not isinstance(node, list):
        where = ".".join(path) or "<root>"
        raise MalformedResponseError(
            f"expected array at {where}, got {type(node).__name__}"
        )
    return node

# =============================================================================
# Hangbridge -- JSON Patch
# =============================================================================
#
# RFC 6902 patch application over plain JSON-like trees (dict / list /
# scalars) with RFC 6901 pointer resolution.
#
# A batch is applied to a deep copy of the document: either every operation
# succeeds and the copy is returned, or a PatchError is raised and the
# caller's document is untouched.
# =============================================================================

from __future__ import annotations

import copy
from typing import Any, Iterable, Mapping

from .errors import InvalidPatchError, PatchPointerError, PatchTestFailedError

OPERATIONS = frozenset({"add", "remove", "replace", "move", "copy", "test"})

_MISSING = object()


def parse_pointer(pointer: str) -> list[str]:
    """Split a JSON pointer into unescaped reference tokens.

    ``""`` is the whole document and yields ``[]``.
    """
    if not isinstance(pointer, str):
        raise InvalidPatchError(f"Pointer must be a string, got {type(pointer).__name__}")
    if pointer == "":
        return []
    if not pointer.startswith("/"):
        raise PatchPointerError(f"Pointer must start with '/': {pointer!r}")
    return [token.replace("~1", "/").replace("~0", "~") for token in pointer[1:].split("/")]


def _list_index(container: list, token: str, pointer: str, *, allow_end: bool) -> int:
    if token == "-":
        if allow_end:
            return len(container)
        raise PatchPointerError(f"'-' not allowed here: {pointer}")
    if not token.isdigit() or (len(token) > 1 and token[0] == "0"):
        raise PatchPointerError(f"Invalid array index {token!r} in {pointer}")
    index = int(token)
    limit = len(container) if allow_end else len(container) - 1
    if index > limit:
        raise PatchPointerError(f"Array index {index} out of range in {pointer}")
    return index


def _child(node: Any, token: str, pointer: str) -> Any:
    if isinstance(node, dict):
        if token not in node:
            raise PatchPointerError(f"Path does not exist: {pointer}")
        return node[token]
    if isinstance(node, list):
        return node[_list_index(node, token, pointer, allow_end=False)]
    raise PatchPointerError(f"Cannot traverse into scalar at {pointer}")


def resolve(document: Any, pointer: str) -> Any:
    """Return the value ``pointer`` refers to, raising if it does not exist."""
    node = document
    for token in parse_pointer(pointer):
        node = _child(node, token, pointer)
    return node


def _parent(document: Any, tokens: list[str], pointer: str) -> Any:
    node = document
    for token in tokens[:-1]:
        node = _child(node, token, pointer)
    if not isinstance(node, (dict, list)):
        raise PatchPointerError(f"Parent of {pointer} is not a container")
    return node


def _json_equal(a: Any, b: Any) -> bool:
    # bool is an int subclass in Python; JSON keeps them distinct.
    if isinstance(a, bool) or isinstance(b, bool):
        return isinstance(a, bool) and isinstance(b, bool) and a is b
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(_json_equal(a[k], b[k]) for k in a)
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(_json_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, (int, float)) and isinstance(b, (int, float)):
        return a == b
    return type(a) is type(b) and a == b


# -- Single operations ---------------------------------------------------------
# Each takes the working document and returns it (possibly a new root).


def _add(document: Any, pointer: str, value: Any) -> Any:
    tokens = parse_pointer(pointer)
    if not tokens:
        return value
    parent = _parent(document, tokens, pointer)
    token = tokens[-1]
    if isinstance(parent, dict):
        parent[token] = value
    else:
        parent.insert(_list_index(parent, token, pointer, allow_end=True), value)
    return document


def _remove(document: Any, pointer: str) -> tuple[Any, Any]:
    tokens = parse_pointer(pointer)
    if not tokens:
        raise PatchPointerError("Cannot remove the document root")
    parent = _parent(document, tokens, pointer)
    token = tokens[-1]
    if isinstance(parent, dict):
        if token not in parent:
            raise PatchPointerError(f"Path does not exist: {pointer}")
        return document, parent.pop(token)
    return document, parent.pop(_list_index(parent, token, pointer, allow_end=False))


def _replace(document: Any, pointer: str, value: Any) -> Any:
    tokens = parse_pointer(pointer)
    if not tokens:
        return value
    parent = _parent(document, tokens, pointer)
    token = tokens[-1]
    if isinstance(parent, dict):
        if token not in parent:
            raise PatchPointerError(f"Path does not exist: {pointer}")
        parent[token] = value
    else:
        parent[_list_index(parent, token, pointer, allow_end=False)] = value
    return document


def _member(operation: Mapping[str, Any], name: str, index: int) -> Any:
    value = operation.get(name, _MISSING)
    if value is _MISSING:
        raise InvalidPatchError(
            f"Operation {index} ({operation.get('op')}) is missing '{name}'"
        )
    return value


def apply_operation(document: Any, operation: Mapping[str, Any], index: int = 0) -> Any:
    """Apply one operation to ``document`` in place; return the (new) root."""
    if not isinstance(operation, Mapping):
        raise InvalidPatchError(f"Operation {index} is not an object")
    op = operation.get("op")
    if op not in OPERATIONS:
        raise InvalidPatchError(f"Operation {index} has unknown op {op!r}")
    path = _member(operation, "path", index)

    if op == "add":
        return _add(document, path, copy.deepcopy(_member(operation, "value", index)))
    if op == "remove":
        document, _ = _remove(document, path)
        return document
    if op == "replace":
        return _replace(document, path, copy.deepcopy(_member(operation, "value", index)))
    if op == "test":
        expected = _member(operation, "value", index)
        if not _json_equal(resolve(document, path), expected):
            raise PatchTestFailedError(f"Test failed at {path}")
        return document

    source = _member(operation, "from", index)
    if op == "move":
        if source == path:
            resolve(document, source)
            return document
        if path.startswith(source + "/"):
            raise InvalidPatchError(f"Cannot move {source} into its own child {path}")
        document, value = _remove(document, source)
        return _add(document, path, value)

    # copy
    return _add(document, path, copy.deepcopy(resolve(document, source)))


def apply_patch(document: Any, operations: Iterable[Mapping[str, Any]]) -> Any:
    """Apply a patch batch atomically and return the new document.

    ``document`` is never modified. Raises a :class:`~hangbridge.errors.PatchError`
    subclass if any operation fails.
    """
    if isinstance(operations, (str, bytes, Mapping)):
        raise InvalidPatchError("Patch must be a list of operations")
    working = copy.deepcopy(document)
    for index, operation in enumerate(operations):
        working = apply_operation(working, operation, index)
    return working

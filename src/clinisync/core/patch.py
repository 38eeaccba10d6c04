"""Structured JSON patches between record versions.

Patches are RFC 6902 operation lists restricted to ``add``, ``remove`` and
``replace``, addressed with JSON pointers.  ``diff()`` is deterministic:
object keys are visited in sorted order and array elements by index, so the
same pair of bodies always yields the same operation list.
"""

from __future__ import annotations

import copy
import json

PATCH_OPS: frozenset[str] = frozenset({"add", "remove", "replace"})


class IncompatibleVersionError(ValueError):
    """Raised when two bodies do not describe the same record."""


class PatchConflictError(ValueError):
    """Raised when a patch cannot be applied to a document."""


# ---------------------------------------------------------------------------
# JSON pointers
# ---------------------------------------------------------------------------


def escape_token(token: str) -> str:
    return token.replace("~", "~0").replace("/", "~1")


def unescape_token(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def join_pointer(path: str, token: str | int) -> str:
    return f"{path}/{escape_token(str(token))}"


def split_pointer(path: str) -> list[str]:
    """Split a JSON pointer into unescaped reference tokens."""
    if path == "":
        return []
    if not path.startswith("/"):
        raise PatchConflictError(f"Invalid JSON pointer: {path!r}")
    return [unescape_token(token) for token in path[1:].split("/")]


# ---------------------------------------------------------------------------
# diff
# ---------------------------------------------------------------------------


def diff(old: dict, new: dict) -> list[dict]:
    """Return the operations that transform *old* into *new*.

    Raises:
        IncompatibleVersionError: If the bodies declare a different
            ``resourceType`` or ``id``.
    """
    if old.get("resourceType") != new.get("resourceType"):
        raise IncompatibleVersionError(
            f"Cannot diff {old.get('resourceType')} against {new.get('resourceType')}"
        )
    if old.get("id") != new.get("id"):
        raise IncompatibleVersionError(
            f"Cannot diff {old.get('resourceType')}/{old.get('id')} "
            f"against {new.get('resourceType')}/{new.get('id')}"
        )
    ops: list[dict] = []
    _diff_value("", old, new, ops)
    return ops


def _same_scalar(a: object, b: object) -> bool:
    # JSON distinguishes true/1 and 1/1.0 even though Python's == does not.
    return type(a) is type(b) and a == b


def _diff_value(path: str, old: object, new: object, ops: list[dict]) -> None:
    if isinstance(old, dict) and isinstance(new, dict):
        _diff_object(path, old, new, ops)
    elif isinstance(old, list) and isinstance(new, list):
        _diff_array(path, old, new, ops)
    elif not _same_scalar(old, new):
        ops.append({"op": "replace", "path": path, "value": copy.deepcopy(new)})


def _diff_object(path: str, old: dict, new: dict, ops: list[dict]) -> None:
    for key in sorted(set(old) | set(new)):
        child = join_pointer(path, key)
        if key not in new:
            ops.append({"op": "remove", "path": child})
        elif key not in old:
            ops.append({"op": "add", "path": child, "value": copy.deepcopy(new[key])})
        else:
            _diff_value(child, old[key], new[key], ops)


def _diff_array(path: str, old: list, new: list, ops: list[dict]) -> None:
    common = min(len(old), len(new))
    for i in range(common):
        _diff_value(join_pointer(path, i), old[i], new[i], ops)
    for i in range(common, len(new)):
        ops.append({"op": "add", "path": join_pointer(path, i), "value": copy.deepcopy(new[i])})
    # Highest index first so earlier indices stay valid.
    for i in reversed(range(common, len(old))):
        ops.append({"op": "remove", "path": join_pointer(path, i)})


# ---------------------------------------------------------------------------
# apply
# ---------------------------------------------------------------------------


def apply_patch(document: dict, ops: list[dict]) -> dict:
    """Apply *ops* to a copy of *document* and return the result.

    Raises:
        PatchConflictError: If an operation does not fit the document.
    """
    result: object = copy.deepcopy(document)
    for op in ops:
        result = _apply_op(result, op)
    if not isinstance(result, dict):
        raise PatchConflictError("Patch did not produce a JSON object")
    return result


def _array_index(token: str, upper: int, path: str) -> int:
    if not token.isdigit() or (len(token) > 1 and token.startswith("0")):
        raise PatchConflictError(f"Invalid array index in {path!r}")
    index = int(token)
    if index > upper:
        raise PatchConflictError(f"Array index out of range in {path!r}")
    return index


def _resolve(document: object, tokens: list[str], path: str) -> object:
    node = document
    for token in tokens:
        if isinstance(node, dict):
            if token not in node:
                raise PatchConflictError(f"Path not found: {path!r}")
            node = node[token]
        elif isinstance(node, list):
            node = node[_array_index(token, len(node) - 1, path)]
        else:
            raise PatchConflictError(f"Path not found: {path!r}")
    return node


def _apply_op(document: object, op: dict) -> object:
    kind = op.get("op")
    path = op.get("path")
    if kind not in PATCH_OPS or not isinstance(path, str):
        raise PatchConflictError(f"Unsupported patch operation: {op!r}")

    tokens = split_pointer(path)
    if not tokens:
        if kind == "remove":
            raise PatchConflictError("Cannot remove the document root")
        return copy.deepcopy(op.get("value"))

    parent = _resolve(document, tokens[:-1], path)
    last = tokens[-1]

    if isinstance(parent, dict):
        if kind == "add":
            parent[last] = copy.deepcopy(op.get("value"))
        elif last not in parent:
            raise PatchConflictError(f"Path not found: {path!r}")
        elif kind == "replace":
            parent[last] = copy.deepcopy(op.get("value"))
        else:
            del parent[last]
    elif isinstance(parent, list):
        if kind == "add":
            if last == "-":
                parent.append(copy.deepcopy(op.get("value")))
            else:
                parent.insert(_array_index(last, len(parent), path), copy.deepcopy(op.get("value")))
        else:
            index = _array_index(last, len(parent) - 1, path)
            if kind == "replace":
                parent[index] = copy.deepcopy(op.get("value"))
            else:
                del parent[index]
    else:
        raise PatchConflictError(f"Path not found: {path!r}")
    return document


# ---------------------------------------------------------------------------
# merge
# ---------------------------------------------------------------------------


def merge(first: list[dict], second: list[dict]) -> list[dict]:
    """Concatenate two patches and collapse redundant same-path operations.

    When a later operation targets exactly the same path as an earlier one,
    the pair is folded into the later position.  Operations on distinct
    paths keep their relative order.  A pair is only folded when no
    operation between them touches an ancestor, a descendant, or an array
    sibling of that path, so the merged patch always has the same effect as
    applying *first* then *second*.
    """
    slots: list[dict | None] = []
    for op in [*first, *second]:
        slots.append(copy.deepcopy(op))
        _collapse_tail(slots)
    return [op for op in slots if op is not None]


def _parent_and_last(path: str) -> tuple[str, str]:
    head, _, last = path.rpartition("/")
    return head, last


def _is_array_token(token: str) -> bool:
    return token == "-" or token.isdigit()


def _interferes(path: str, other: str) -> bool:
    if other.startswith(path + "/") or path.startswith(other + "/"):
        return True
    parent, last = _parent_and_last(path)
    other_parent, other_last = _parent_and_last(other)
    return parent == other_parent and _is_array_token(last) and _is_array_token(other_last)


def _collapse_tail(slots: list[dict | None]) -> None:
    later = slots[-1]
    path = later["path"]
    for index in range(len(slots) - 2, -1, -1):
        earlier = slots[index]
        if earlier is None:
            continue
        if earlier["path"] != path:
            if _interferes(path, earlier["path"]):
                return
            continue

        pair = (earlier["op"], later["op"])
        if pair in (("add", "replace"), ("replace", "replace")):
            slots[index] = None
            slots[-1] = {"op": earlier["op"], "path": path, "value": later["value"]}
        elif pair == ("replace", "remove"):
            slots[index] = None
        elif pair == ("add", "remove"):
            slots[index] = None
            slots[-1] = None
        elif pair == ("remove", "add"):
            slots[index] = None
            slots[-1] = {"op": "replace", "path": path, "value": later["value"]}
        return


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------


def serialize_patch(ops: list[dict]) -> str:
    """Serialize a patch to canonical compact JSON."""
    return json.dumps(ops, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def parse_patch(text: str) -> list[dict]:
    """Parse and validate a serialized patch.

    Raises:
        PatchConflictError: If *text* is not a list of supported operations.
    """
    try:
        ops = json.loads(text)
    except json.JSONDecodeError as exc:
        raise PatchConflictError(f"Invalid patch JSON: {exc}") from None
    if not isinstance(ops, list):
        raise PatchConflictError("Patch must be a JSON array")
    for op in ops:
        if not isinstance(op, dict) or op.get("op") not in PATCH_OPS or "path" not in op:
            raise PatchConflictError(f"Unsupported patch operation: {op!r}")
    return ops

"""Hashing and canonical encoding shared by proofs, beacons and protocol messages.

Every digest in certnet is SHA-256 over canonical JSON: sorted keys, no
insignificant whitespace, UTF-8, integers only. Two parties that agree on a
value therefore agree on its digest byte for byte.
"""

from __future__ import annotations

import hashlib
import json
import pathlib
import re
from typing import Any

import yaml

PACKAGE_ROOT = pathlib.Path(__file__).resolve().parent

_SHA256_HEX = re.compile(r"[0-9a-f]{64}")


def sha256_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def _check_canonical(value: Any, where: str) -> None:
    if isinstance(value, float):
        raise ValueError(f"float at {where or '$'} has no canonical encoding")
    if isinstance(value, dict):
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"non-string key {key!r} at {where or '$'}")
            _check_canonical(item, f"{where}.{key}")
    elif isinstance(value, (list, tuple)):
        for i, item in enumerate(value):
            _check_canonical(item, f"{where}[{i}]")


def canonical_json_bytes(obj: Any) -> bytes:
    """Canonical JSON encoding of `obj`.

    Raises ValueError for floats and non-string keys, which have no stable
    cross-implementation encoding.
    """
    _check_canonical(obj, "")
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def canonical_digest(obj: Any) -> str:
    """SHA-256 hex of the canonical JSON encoding of `obj`."""
    return sha256_bytes(canonical_json_bytes(obj))


def is_valid_sha256(digest: Any) -> bool:
    """True for a 64 character lowercase hex string."""
    return isinstance(digest, str) and _SHA256_HEX.fullmatch(digest) is not None


def load_json(path: pathlib.Path) -> Any:
    return json.loads(pathlib.Path(path).read_text(encoding="utf-8"))


def load_yaml(path: pathlib.Path) -> Any:
    return yaml.safe_load(pathlib.Path(path).read_text(encoding="utf-8"))

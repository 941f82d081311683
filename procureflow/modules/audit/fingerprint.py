from __future__ import annotations

import hashlib
import json
from decimal import Decimal
from typing import Any, Mapping

_EXCLUDED = {"integrityFingerprint"}


def _canonical(value: Any) -> Any:
    # Integral floats are read back from DynamoDB as ints; hash them the same way.
    if isinstance(value, bool):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else value
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, Mapping):
        return {str(k): _canonical(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_canonical(v) for v in value]
    return value


def canonical_json(payload: Mapping[str, Any]) -> str:
    return json.dumps(
        _canonical(dict(payload)),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        default=str,
    )


def compute_fingerprint(entry: Mapping[str, Any], *, prev_fingerprint: str) -> str:
    material = {k: v for k, v in entry.items() if k not in _EXCLUDED}
    material["prevFingerprint"] = prev_fingerprint
    return hashlib.sha256(canonical_json(material).encode("utf-8")).hexdigest()

"""Best-effort structured metadata attached to a passkey.

Stored as a JSON text blob (device name, app version, last location, ...).
Decoding never fails: anything that is not a JSON object becomes an empty
mapping, and the caller learns whether the stored value was usable.
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class PasskeyMetadata:
    """Schema-less metadata with defensive decode and shallow merge."""

    fields: dict[str, Any] = field(default_factory=dict)
    # False when the stored blob was missing or unparseable
    intact: bool = True

    @classmethod
    def decode(cls, raw: str | None) -> "PasskeyMetadata":
        if raw is None or raw == "":
            return cls({}, intact=False)
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            return cls({}, intact=False)
        if not isinstance(data, dict):
            return cls({}, intact=False)
        return cls(data)

    def merged(self, updates: dict[str, Any] | None = None, **extra: Any) -> "PasskeyMetadata":
        """Return a new value with ``updates`` and ``extra`` laid over this one."""
        combined = dict(self.fields)
        if updates:
            combined.update(updates)
        combined.update(extra)
        return PasskeyMetadata(combined)

    def encode(self) -> str:
        return json.dumps(self.fields, default=str)

    def get(self, key: str, default: Any = None) -> Any:
        return self.fields.get(key, default)

"""
Result types shared across provider families.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass
class ConnectionTestResult:
    """Outcome of a connection test. Returned, never raised."""
    connected: bool
    version: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None

    @classmethod
    def failure(cls, message: str) -> "ConnectionTestResult":
        return cls(connected=False, error=message)

    def to_dict(self) -> dict:
        result: Dict[str, Any] = {"connected": self.connected}
        if self.version is not None:
            result["version"] = self.version
        if self.details:
            result["details"] = self.details
        if self.error is not None:
            result["error"] = self.error
        return result


def pick(data: Optional[Mapping[str, Any]], key: str, default: Any = None) -> Any:
    """
    Read ``key`` from a provider payload, accepting camelCase or PascalCase.

    Older provider builds return ``InstanceName`` where newer ones return
    ``instanceName``.
    """
    if not data:
        return default
    if data.get(key) is not None:
        return data[key]
    pascal = key[:1].upper() + key[1:]
    if data.get(pascal) is not None:
        return data[pascal]
    return default

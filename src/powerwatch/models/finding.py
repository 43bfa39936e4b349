"""
Finding data model for PowerWatch.

The assessment engine reports findings as free-text strings that embed
their own severity ("No DLP policies configured - HIGH RISK"). This module
is the parsing boundary: raw findings are turned into typed Finding objects
once, when a snapshot is built, and everything downstream reads the
Severity field instead of re-parsing text.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any


class Severity(Enum):
    """Severity level of a finding."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def weight(self) -> int:
        """Risk score contribution of a single finding at this severity."""
        return _SEVERITY_WEIGHTS[self]

    @classmethod
    def from_string(cls, value: str) -> Severity:
        """
        Create Severity from an explicit string value.

        Args:
            value: String representation (case-insensitive)

        Returns:
            Matching Severity enum value

        Raises:
            ValueError: If value is not a valid severity
        """
        value_upper = value.strip().upper()
        for severity in cls:
            if severity.value == value_upper:
                return severity
        raise ValueError(f"Invalid severity: {value}")

    @classmethod
    def from_message(cls, message: str) -> Severity:
        """
        Infer severity from a finding message.

        Matching is case-sensitive: the literal text "HIGH" wins over
        "MEDIUM", and anything else is LOW.
        """
        if "HIGH" in message:
            return cls.HIGH
        if "MEDIUM" in message:
            return cls.MEDIUM
        return cls.LOW


_SEVERITY_WEIGHTS = {
    Severity.HIGH: 10,
    Severity.MEDIUM: 5,
    Severity.LOW: 1,
}


@dataclass(frozen=True)
class Finding:
    """
    A single detected condition on an assessed resource.

    Attributes:
        message: Human-readable description as produced by the engine
        severity: Severity of the finding
    """

    message: str
    severity: Severity

    @property
    def risk_score(self) -> int:
        """Risk score of this finding alone."""
        return self.severity.weight

    def to_dict(self) -> dict[str, Any]:
        """Convert finding to dictionary representation."""
        return {
            "message": self.message,
            "severity": self.severity.value,
        }

    @classmethod
    def parse(cls, raw: Any) -> Finding:
        """
        Build a Finding from raw engine output.

        Accepts either a plain string, classified by substring, or a
        mapping with a message and an explicit severity.

        Args:
            raw: String or dictionary from the engine result

        Returns:
            New Finding instance

        Raises:
            ValueError: If the value cannot be interpreted as a finding
        """
        if isinstance(raw, str):
            return cls(message=raw, severity=Severity.from_message(raw))

        if isinstance(raw, dict):
            message = ""
            for key in ("message", "Message", "description", "Description", "finding", "Finding"):
                if raw.get(key):
                    message = str(raw[key])
                    break

            severity_value = raw.get("severity", raw.get("Severity"))
            if severity_value:
                severity = Severity.from_string(str(severity_value))
            else:
                severity = Severity.from_message(message)
            return cls(message=message, severity=severity)

        raise ValueError(f"Unsupported finding value: {raw!r}")


def parse_findings(raw: Any) -> tuple[Finding, ...]:
    """
    Parse the findings list of a single record.

    A missing list yields no findings and a bare string is treated as a
    single finding.
    """
    if raw is None:
        return ()
    if isinstance(raw, (str, dict)):
        raw = [raw]
    return tuple(Finding.parse(item) for item in raw if item not in (None, ""))

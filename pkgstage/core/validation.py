"""Validation results returned by listener hooks."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


class Severity(str, Enum):
    """Collapsed severity of one or more results."""

    OK = "OK"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass(frozen=True)
class ValidationResult:
    """A group of messages sharing one severity.

    More than one message requires a summary.
    """

    severity: Severity
    messages: tuple[str, ...]
    summary: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.messages:
            raise ValueError("At least one message is required.")
        if len(self.messages) > 1 and not self.summary:
            raise ValueError("If more than one message is provided, a summary is required.")

    @classmethod
    def error(cls, messages: Iterable[str], summary: Optional[str] = None) -> ValidationResult:
        return cls(Severity.ERROR, tuple(str(m) for m in messages), summary)

    @classmethod
    def warning(cls, messages: Iterable[str], summary: Optional[str] = None) -> ValidationResult:
        return cls(Severity.WARNING, tuple(str(m) for m in messages), summary)

    @classmethod
    def error_from_exception(
        cls, exc: BaseException, summary: Optional[str] = None
    ) -> ValidationResult:
        return cls(Severity.ERROR, (str(exc) or type(exc).__name__,), summary)

    def to_dict(self) -> dict:
        return {
            "severity": self.severity.value,
            "summary": self.summary,
            "messages": list(self.messages),
        }


def overall_severity(results: Iterable[ValidationResult]) -> Severity:
    seen = False
    for result in results:
        if result.severity == Severity.ERROR:
            return Severity.ERROR
        seen = True
    return Severity.WARNING if seen else Severity.OK


def errors_only(results: Iterable[ValidationResult]) -> list[ValidationResult]:
    return [result for result in results if result.severity == Severity.ERROR]

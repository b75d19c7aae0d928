"""Lifecycle events and the ordered listener dispatcher.

Listeners subclass ``StageListener`` and override only the hooks they care
about. Pre-operation hooks return validation results; any ERROR result vetoes
the operation. A listener that raises aborts the dispatch and is reported as a
``StageError``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from pkgstage.core.validation import Severity, ValidationResult
from pkgstage.errors import StageError, StageValidationError

if TYPE_CHECKING:
    from pkgstage.core.lifecycle import StageLifecycle

logger = logging.getLogger(__name__)


class StageEventType(str, Enum):
    PRE_CREATE = "pre_create"
    POST_CREATE = "post_create"
    PRE_REQUIRE = "pre_require"
    POST_REQUIRE = "post_require"
    PRE_APPLY = "pre_apply"
    POST_APPLY = "post_apply"
    PRE_DESTROY = "pre_destroy"
    POST_DESTROY = "post_destroy"
    STATUS_CHECK = "status_check"

    @property
    def hook_name(self) -> str:
        return f"on_{self.value}"

    @property
    def is_pre_operation(self) -> bool:
        return self in _PRE_OPERATION


_PRE_OPERATION = {
    StageEventType.PRE_CREATE,
    StageEventType.PRE_REQUIRE,
    StageEventType.PRE_APPLY,
    StageEventType.PRE_DESTROY,
}


@dataclass(frozen=True)
class StageEvent:
    type: StageEventType
    stage: "StageLifecycle"
    excluded_paths: frozenset[str] = frozenset()
    runtime: tuple[str, ...] = ()
    dev: tuple[str, ...] = ()


class StageListener:
    """No-op hooks. Override the ones you need.

    A listener with ``stop_on_error`` set ends the dispatch as soon as it
    reports an error.
    """

    stop_on_error = False

    def on_pre_create(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_post_create(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_pre_require(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_post_require(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_pre_apply(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_post_apply(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_pre_destroy(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_post_destroy(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None

    def on_status_check(self, event: StageEvent) -> Optional[Iterable[ValidationResult]]:
        return None


class EventDispatcher:
    def __init__(self, listeners: Sequence[StageListener] = ()) -> None:
        self.listeners = list(listeners)

    def add_listener(self, listener: StageListener) -> None:
        self.listeners.append(listener)

    def _call(self, listener: StageListener, event: StageEvent) -> list[ValidationResult]:
        hook = getattr(listener, event.type.hook_name)
        return list(hook(event) or [])

    def dispatch(self, event: StageEvent) -> list[ValidationResult]:
        """Run every listener in order and return their results.

        Raises StageError if a listener raises, and StageValidationError if a
        pre-operation hook returned any error.
        """
        results: list[ValidationResult] = []
        for listener in self.listeners:
            try:
                returned = self._call(listener, event)
            except Exception as exc:
                logger.error(
                    "%s failed during %s: %s", type(listener).__name__, event.type.value, exc
                )
                raise StageError(str(exc) or type(exc).__name__) from exc
            results.extend(returned)
            if _stops(listener, returned):
                break
        if event.type.is_pre_operation and any(
            result.severity == Severity.ERROR for result in results
        ):
            raise StageValidationError(results)
        return results

    def dispatch_all(self, event: StageEvent) -> list[ValidationResult]:
        """Run every listener even when one fails, then raise the first failure."""
        results: list[ValidationResult] = []
        first_error: Optional[Exception] = None
        for listener in self.listeners:
            try:
                results.extend(self._call(listener, event))
            except Exception as exc:
                logger.error(
                    "%s failed during %s: %s", type(listener).__name__, event.type.value, exc
                )
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise StageError(str(first_error) or type(first_error).__name__) from first_error
        return results

    def collect_status(self, event: StageEvent) -> list[ValidationResult]:
        """Status checks never raise; a crashing listener becomes an error result."""
        results: list[ValidationResult] = []
        for listener in self.listeners:
            try:
                returned = self._call(listener, event)
            except Exception as exc:
                logger.warning("%s failed during status check: %s", type(listener).__name__, exc)
                results.append(ValidationResult.error_from_exception(exc))
                continue
            results.extend(returned)
            if _stops(listener, returned):
                break
        return results


def _stops(listener: StageListener, results: list[ValidationResult]) -> bool:
    return getattr(listener, "stop_on_error", False) and any(
        result.severity == Severity.ERROR for result in results
    )

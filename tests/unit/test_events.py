"""Unit tests for listener dispatch and validation results."""

from __future__ import annotations

import pytest

from pkgstage.core.events import EventDispatcher, StageEvent, StageEventType, StageListener
from pkgstage.core.validation import (
    Severity,
    ValidationResult,
    errors_only,
    overall_severity,
)
from pkgstage.errors import StageError, StageValidationError


class Recorder(StageListener):
    def __init__(self, name: str, calls: list[str], results=(), stop_on_error=False) -> None:
        self.name = name
        self.calls = calls
        self.results = list(results)
        self.stop_on_error = stop_on_error

    def _record(self, event):
        self.calls.append(f"{self.name}:{event.type.value}")
        return self.results

    on_pre_create = _record
    on_post_create = _record
    on_status_check = _record


class Exploding(StageListener):
    def on_pre_create(self, event):
        raise RuntimeError("listener blew up")

    on_post_create = on_pre_create
    on_status_check = on_pre_create


def _event(event_type: StageEventType) -> StageEvent:
    return StageEvent(type=event_type, stage=None)


def test_listeners_run_in_registration_order() -> None:
    calls: list[str] = []
    dispatcher = EventDispatcher([Recorder("a", calls)])
    dispatcher.add_listener(Recorder("b", calls))

    assert dispatcher.dispatch(_event(StageEventType.PRE_CREATE)) == []
    assert calls == ["a:pre_create", "b:pre_create"]


def test_unimplemented_hooks_are_noops() -> None:
    dispatcher = EventDispatcher([StageListener()])

    for event_type in StageEventType:
        assert dispatcher.dispatch(_event(event_type)) == []


def test_pre_operation_error_vetoes_with_all_results() -> None:
    calls: list[str] = []
    warning = ValidationResult.warning(["careful"])
    error = ValidationResult.error(["nope"])
    dispatcher = EventDispatcher(
        [Recorder("a", calls, [warning]), Recorder("b", calls, [error]), Recorder("c", calls)]
    )

    with pytest.raises(StageValidationError) as excinfo:
        dispatcher.dispatch(_event(StageEventType.PRE_CREATE))

    assert excinfo.value.results == (warning, error)
    assert str(excinfo.value) == "careful\nnope"
    assert calls == ["a:pre_create", "b:pre_create", "c:pre_create"]


def test_post_operation_errors_are_returned_not_raised() -> None:
    error = ValidationResult.error(["after the fact"])
    dispatcher = EventDispatcher([Recorder("a", [], [error])])

    assert dispatcher.dispatch(_event(StageEventType.POST_CREATE)) == [error]


def test_stop_on_error_ends_dispatch() -> None:
    calls: list[str] = []
    error = ValidationResult.error(["stop here"])
    dispatcher = EventDispatcher(
        [Recorder("a", calls, [error], stop_on_error=True), Recorder("b", calls)]
    )

    with pytest.raises(StageValidationError, match="stop here"):
        dispatcher.dispatch(_event(StageEventType.PRE_CREATE))
    assert calls == ["a:pre_create"]


def test_raising_listener_becomes_stage_error() -> None:
    calls: list[str] = []
    dispatcher = EventDispatcher([Exploding(), Recorder("b", calls)])

    with pytest.raises(StageError, match="listener blew up") as excinfo:
        dispatcher.dispatch(_event(StageEventType.PRE_CREATE))

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert calls == []


def test_dispatch_all_runs_everyone_then_raises_first_failure() -> None:
    calls: list[str] = []
    dispatcher = EventDispatcher([Exploding(), Recorder("b", calls)])

    with pytest.raises(StageError, match="listener blew up"):
        dispatcher.dispatch_all(_event(StageEventType.POST_CREATE))
    assert calls == ["b:post_create"]


def test_status_check_turns_exceptions_into_results() -> None:
    warning = ValidationResult.warning(["low disk"])
    dispatcher = EventDispatcher([Exploding(), Recorder("b", [], [warning])])

    results = dispatcher.collect_status(_event(StageEventType.STATUS_CHECK))

    assert results[0].severity == Severity.ERROR
    assert results[0].messages == ("listener blew up",)
    assert results[1] == warning


def test_event_types() -> None:
    assert StageEventType.PRE_APPLY.hook_name == "on_pre_apply"
    assert StageEventType.PRE_DESTROY.is_pre_operation
    assert not StageEventType.POST_APPLY.is_pre_operation
    assert not StageEventType.STATUS_CHECK.is_pre_operation


def test_validation_result_requires_summary_for_many_messages() -> None:
    with pytest.raises(ValueError, match="At least one message"):
        ValidationResult.error([])
    with pytest.raises(ValueError, match="summary is required"):
        ValidationResult.error(["one", "two"])

    result = ValidationResult.error(["one", "two"], summary="Two problems")
    assert result.to_dict() == {
        "severity": "ERROR",
        "summary": "Two problems",
        "messages": ["one", "two"],
    }
    assert str(StageValidationError([result])) == "Two problems\none\ntwo"


def test_overall_severity() -> None:
    warning = ValidationResult.warning(["w"])
    error = ValidationResult.error(["e"])

    assert overall_severity([]) == Severity.OK
    assert overall_severity([warning]) == Severity.WARNING
    assert overall_severity([warning, error]) == Severity.ERROR
    assert errors_only([warning, error]) == [error]

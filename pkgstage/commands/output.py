"""CLI output: one JSON envelope per command, or plain ``command: ...`` lines."""

from __future__ import annotations

import json
from typing import Iterable, Optional

from pkgstage.core.validation import ValidationResult

SCHEMA_VERSION = "v1"


def _result_lines(command: str, results: list[ValidationResult]) -> list[str]:
    lines = []
    for result in results:
        severity = result.severity.value
        if result.summary:
            lines.append(f"{command}: {severity}: {result.summary}")
            lines.extend(f"{command}:   {message}" for message in result.messages)
        else:
            lines.extend(f"{command}: {severity}: {message}" for message in result.messages)
    return lines


def emit_output(
    *,
    command: str,
    payload: dict,
    json_output: bool,
    output_sink=print,
    human_lines: Iterable[str] = (),
    results: Optional[Iterable[ValidationResult]] = None,
) -> None:
    """Write a command's outcome to ``output_sink``.

    Validation ``results``, when given, land under ``data.results`` in JSON
    mode and after ``human_lines`` as ``command: severity: message`` lines
    otherwise.
    """
    results = list(results) if results is not None else None
    if json_output:
        data = dict(payload)
        if results is not None:
            data["results"] = [result.to_dict() for result in results]
        envelope = {"schema_version": SCHEMA_VERSION, "command": command, "data": data}
        output_sink(json.dumps(envelope, sort_keys=True, separators=(",", ":")))
        return
    for line in human_lines:
        output_sink(line)
    for line in _result_lines(command, results or []):
        output_sink(line)

"""Status command - report the active stage and run status checks."""

from __future__ import annotations

from argparse import Namespace

from pkgstage.commands.output import emit_output
from pkgstage.core.validation import Severity, overall_severity
from pkgstage.errors import ApplyFailedError


def _stage_payload(record) -> dict | None:
    if record is None:
        return None
    return {
        "stage_id": record.stage_id,
        "stage_name": record.stage_name,
        "owner_id": record.owner_id,
        "state": record.state.value,
        "created_at": record.created_at,
        "changes_applied": record.changes_applied,
    }


def run_status(args: Namespace, *, app, output_sink=print) -> int:
    """Show the active stage, the failure marker and validator results.

    Returns 0 when an update could start, 1 otherwise.
    """
    lifecycle = app.lifecycle(owner_id=args.owner)
    try:
        marker = app.failure_marker.read()
        failure = marker.to_dict() if marker else None
    except ApplyFailedError as exc:
        failure = {"message": str(exc)}
    record = app.lock.get()
    results = lifecycle.run_status_checks()
    severity = overall_severity(results)

    payload = {
        "project_root": str(app.locator.project_root),
        "stage": _stage_payload(record),
        "failure": failure,
        "severity": severity.value,
    }
    human_lines = [f"status: project={payload['project_root']}"]
    if record is None:
        human_lines.append("status: no active stage")
    else:
        human_lines.append(
            f"status: stage={record.stage_id} type={record.stage_name} "
            f"owner={record.owner_id} state={record.state.value}"
        )
    if failure is not None:
        human_lines.append(f"status: FAILED APPLY: {failure['message']}")
    if not results:
        human_lines.append("status: ok")

    emit_output(
        command="status",
        payload=payload,
        json_output=getattr(args, "json", False),
        output_sink=output_sink,
        human_lines=human_lines,
        results=results,
    )
    return 1 if severity == Severity.ERROR else 0

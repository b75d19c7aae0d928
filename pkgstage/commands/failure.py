"""Clear-failure command - acknowledge a failed apply after manual recovery."""

from __future__ import annotations

from argparse import Namespace
import logging

from pkgstage.commands.output import emit_output
from pkgstage.errors import ApplyFailedError

logger = logging.getLogger(__name__)


def run_clear_failure(args: Namespace, *, app, output_sink=print) -> int:
    """Remove the failure marker so new stages may be created again.

    Only run this once the codebase has been restored from a backup.
    """
    marker = app.failure_marker
    try:
        info = marker.read()
        payload = {"cleared": info is not None, "failure": info.to_dict() if info else None}
    except ApplyFailedError as exc:
        # Unreadable markers are still removed.
        payload = {"cleared": True, "failure": {"message": str(exc)}}
    if payload["cleared"]:
        marker.clear()
        logger.warning("Cleared failure marker at %s", marker.path)

    emit_output(
        command="clear-failure",
        payload=payload,
        json_output=getattr(args, "json", False),
        output_sink=output_sink,
        human_lines=(
            "clear-failure: marker removed" if payload["cleared"] else "clear-failure: no marker",
        ),
    )
    return 0

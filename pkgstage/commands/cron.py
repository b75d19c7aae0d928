"""Cron command - run one unattended core update attempt."""

from __future__ import annotations

from argparse import Namespace

from pkgstage.commands.output import emit_output
from pkgstage.core.unattended import CronStatus


def run_cron(args: Namespace, *, app, notifier=None, output_sink=print) -> int:
    updater = app.unattended_updater(notifier=notifier)
    result = updater.handle_cron(timeout=args.timeout)

    human_lines = [f"cron: {result.status.value}"]
    if result.installed_version:
        target = result.target_version or "-"
        human_lines.append(f"cron: installed={result.installed_version} target={target}")
    if result.message:
        human_lines.append(f"cron: {result.message}")
    emit_output(
        command="cron",
        payload=result.to_dict(),
        json_output=getattr(args, "json", False),
        output_sink=output_sink,
        human_lines=human_lines,
    )
    return 1 if result.status is CronStatus.FAILED else 0

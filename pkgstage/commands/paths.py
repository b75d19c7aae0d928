"""Inspection commands - excluded paths and the staged package diff."""

from __future__ import annotations

from argparse import Namespace

from pkgstage.commands.output import emit_output
from pkgstage.commands.update import claim_stage
from pkgstage.core.exclusions import ExclusionDirection, ExclusionRule
from pkgstage.core.manifest import changed_versions, packages_only_in


def run_excluded_paths(args: Namespace, *, app, output_sink=print) -> int:
    """List the project-relative paths no copy will touch."""
    lifecycle = app.lifecycle(owner_id=args.owner)
    direction = ExclusionDirection(args.direction)
    rules = app.exclusions.collect_rules(lifecycle.exclusion_context(direction))
    selected = sorted(
        (rule for rule in rules if _selected(rule, direction)),
        key=lambda rule: (rule.path, rule.direction.value),
    )
    emit_output(
        command="excluded-paths",
        payload={
            "direction": direction.value,
            "paths": [{"path": rule.path, "direction": rule.direction.value} for rule in selected],
        },
        json_output=getattr(args, "json", False),
        output_sink=output_sink,
        human_lines=[f"{rule.path} ({rule.direction.value})" for rule in selected],
    )
    return 0


def _selected(rule: ExclusionRule, direction: ExclusionDirection) -> bool:
    return direction is ExclusionDirection.BOTH or rule.direction.applies_to(direction)


def run_diff(args: Namespace, *, app, output_sink=print) -> int:
    """Compare installed packages in the stage against the active codebase."""
    lifecycle = claim_stage(args, app)
    active = lifecycle.get_active_manifest().installed_packages
    staged = lifecycle.get_stage_manifest().installed_packages

    added = {name: entry.version for name, entry in sorted(packages_only_in(staged, active).items())}
    removed = {
        name: entry.version for name, entry in sorted(packages_only_in(active, staged).items())
    }
    updated = dict(sorted(changed_versions(active, staged).items()))

    human_lines = [f"+ {name} {version}" for name, version in added.items()]
    human_lines.extend(f"- {name} {version}" for name, version in removed.items())
    human_lines.extend(f"~ {name} {old} -> {new}" for name, (old, new) in updated.items())
    if not human_lines:
        human_lines.append("diff: no changes")
    emit_output(
        command="diff",
        payload={
            "stage_id": lifecycle.stage_id,
            "added": added,
            "removed": removed,
            "updated": {name: {"from": old, "to": new} for name, (old, new) in updated.items()},
        },
        json_output=getattr(args, "json", False),
        output_sink=output_sink,
        human_lines=human_lines,
    )
    return 0

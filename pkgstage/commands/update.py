"""Update commands - begin, stage, apply, post-apply and destroy a stage."""

from __future__ import annotations

from argparse import Namespace
import logging

from pkgstage.commands.output import emit_output
from pkgstage.core.lifecycle import StageLifecycle
from pkgstage.errors import InvalidArgumentError, NoActiveStageError

logger = logging.getLogger(__name__)


def parse_project_versions(values: list[str]) -> dict[str, str]:
    """Turn ``project:version`` arguments into a mapping."""
    versions: dict[str, str] = {}
    for value in values or []:
        project, sep, version = value.partition(":")
        if not sep or not project.strip() or not version.strip():
            raise InvalidArgumentError(f"Expected project:version, got '{value}'")
        versions[project.strip()] = version.strip()
    return versions


def claim_stage(args: Namespace, app) -> StageLifecycle:
    """Claim the stage named by ``--stage-id``, or the project's active stage."""
    record = app.lock.get()
    stage_id = getattr(args, "stage_id", None) or (record.stage_id if record else None)
    if stage_id is None:
        raise NoActiveStageError("Cannot claim the stage because no stage has been created.")
    policy = app.policy_for(record.stage_name) if record is not None else None
    lifecycle = app.lifecycle(policy, owner_id=args.owner)
    return lifecycle.claim(stage_id)


def _emit(
    args: Namespace, command: str, payload: dict, human_lines, output_sink, results=None
) -> None:
    emit_output(
        command=command,
        payload=payload,
        json_output=getattr(args, "json", False),
        output_sink=output_sink,
        human_lines=human_lines,
        results=results,
    )


def run_begin(args: Namespace, *, app, output_sink=print) -> int:
    """Create a stage for the requested project versions."""
    project_versions = parse_project_versions(args.package)
    if args.extensions:
        lifecycle = app.extension_lifecycle(owner_id=args.owner)
    else:
        lifecycle = app.lifecycle(owner_id=args.owner)
    stage_id = lifecycle.begin(project_versions, timeout=args.timeout)
    packages = lifecycle.get_package_versions()
    _emit(
        args,
        "begin",
        {
            "stage_id": stage_id,
            "stage_name": lifecycle.stage_name,
            "stage_directory": str(lifecycle.get_stage_directory()),
            "packages": packages.to_dict(),
        },
        (
            f"begin: stage={stage_id} type={lifecycle.stage_name}",
            *(f"begin: {name} -> {version}" for name, version in packages.all_packages().items()),
        ),
        output_sink,
    )
    return 0


def run_stage(args: Namespace, *, app, output_sink=print) -> int:
    """Require the stored package versions inside the stage."""
    lifecycle = claim_stage(args, app)
    lifecycle.stage(timeout=args.timeout)
    _emit(
        args,
        "stage",
        {"stage_id": lifecycle.stage_id, "state": lifecycle.get_state().value},
        (f"stage: stage={lifecycle.stage_id} state={lifecycle.get_state().value}",),
        output_sink,
    )
    return 0


def run_apply(args: Namespace, *, app, output_sink=print) -> int:
    """Copy the staged codebase over the active one."""
    lifecycle = claim_stage(args, app)
    lifecycle.apply(timeout=args.timeout)
    _emit(
        args,
        "apply",
        {"stage_id": lifecycle.stage_id, "state": lifecycle.get_state().value},
        (f"apply: stage={lifecycle.stage_id} applied",),
        output_sink,
    )
    return 0


def run_post_apply(args: Namespace, *, app, output_sink=print) -> int:
    lifecycle = claim_stage(args, app)
    results = lifecycle.post_apply()
    _emit(
        args,
        "post-apply",
        {
            "stage_id": lifecycle.stage_id,
            "state": lifecycle.get_state().value,
        },
        (f"post-apply: stage={lifecycle.stage_id} state={lifecycle.get_state().value}",),
        output_sink,
        results=results,
    )
    return 0


def run_destroy(args: Namespace, *, app, output_sink=print) -> int:
    """Delete the stage directory and release the lock.

    ``--force`` destroys whatever stage exists without claiming it.
    """
    if args.force:
        record = app.lock.get()
        policy = app.policy_for(record.stage_name) if record is not None else None
        lifecycle = app.lifecycle(policy, owner_id=args.owner)
        stage_id = record.stage_id if record is not None else None
    else:
        lifecycle = claim_stage(args, app)
        stage_id = lifecycle.stage_id
    lifecycle.destroy(force=args.force, message=args.message)
    if stage_id is None:
        logger.info("No stage to destroy")
    _emit(
        args,
        "destroy",
        {"stage_id": stage_id, "destroyed": stage_id is not None},
        (f"destroy: stage={stage_id}" if stage_id else "destroy: no active stage",),
        output_sink,
    )
    return 0

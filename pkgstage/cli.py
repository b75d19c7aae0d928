"""Command-line interface for pkgstage."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from . import __version__


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Settings path (default: ~/.config/pkgstage/settings.json)",
    )
    parser.add_argument(
        "--owner",
        default="cli",
        help="Owner token that claims the stage (default: cli)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        help="Emit machine-readable JSON output",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Log debug output",
    )


def _add_releases_argument(parser: argparse.ArgumentParser, required: bool = False) -> None:
    parser.add_argument(
        "--releases",
        type=Path,
        required=required,
        help="Release metadata JSON for Drupal core",
    )


def _add_stage_id_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--stage-id",
        help="Stage to claim (default: the project's active stage)",
    )


def _add_timeout_argument(parser: argparse.ArgumentParser, default: float) -> None:
    parser.add_argument(
        "--timeout",
        type=float,
        default=default,
        help=f"Seconds before the step is abandoned (default: {default:g})",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pkgstage",
        description="Staged Composer updates for Drupal sites",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"pkgstage {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Diagnostic commands
    status_parser = subparsers.add_parser(
        "status",
        help="Show the active stage and whether an update could start",
    )
    _add_common_arguments(status_parser)
    _add_releases_argument(status_parser)

    paths_parser = subparsers.add_parser(
        "excluded-paths",
        help="List paths that are never copied",
    )
    _add_common_arguments(paths_parser)
    paths_parser.add_argument(
        "--direction",
        choices=["create", "apply", "both"],
        default="both",
        help="Which copy to list exclusions for",
    )

    diff_parser = subparsers.add_parser(
        "diff",
        help="Compare staged packages with the active codebase",
    )
    _add_common_arguments(diff_parser)
    _add_stage_id_argument(diff_parser)

    # Lifecycle commands
    begin_parser = subparsers.add_parser(
        "begin",
        help="Create a stage for the given project versions",
    )
    _add_common_arguments(begin_parser)
    _add_releases_argument(begin_parser)
    _add_timeout_argument(begin_parser, 300)
    begin_parser.add_argument(
        "--package",
        action="append",
        required=True,
        metavar="PROJECT:VERSION",
        help="Project and target version, e.g. drupal:10.1.1 (repeatable)",
    )
    begin_parser.add_argument(
        "--extensions",
        action="store_true",
        help="Update modules or themes instead of Drupal core",
    )

    stage_parser = subparsers.add_parser(
        "stage",
        help="Require the stored package versions inside the stage",
    )
    _add_common_arguments(stage_parser)
    _add_stage_id_argument(stage_parser)
    _add_timeout_argument(stage_parser, 300)

    apply_parser = subparsers.add_parser(
        "apply",
        help="Copy the stage over the active codebase",
    )
    _add_common_arguments(apply_parser)
    _add_stage_id_argument(apply_parser)
    _add_timeout_argument(apply_parser, 600)

    post_apply_parser = subparsers.add_parser(
        "post-apply",
        help="Run post-apply tasks for an applied stage",
    )
    _add_common_arguments(post_apply_parser)
    _add_stage_id_argument(post_apply_parser)

    destroy_parser = subparsers.add_parser(
        "destroy",
        help="Delete the stage and release the lock",
    )
    _add_common_arguments(destroy_parser)
    _add_stage_id_argument(destroy_parser)
    destroy_parser.add_argument(
        "--force",
        action="store_true",
        help="Destroy the active stage even if another owner holds it",
    )
    destroy_parser.add_argument(
        "--message",
        help="Reason recorded for later claim attempts",
    )

    cron_parser = subparsers.add_parser(
        "cron",
        help="Run one unattended core update attempt",
    )
    _add_common_arguments(cron_parser)
    _add_releases_argument(cron_parser, required=True)
    _add_timeout_argument(cron_parser, 300)
    cron_parser.set_defaults(owner="cron")

    clear_parser = subparsers.add_parser(
        "clear-failure",
        help="Remove the failed-apply marker after restoring from backup",
    )
    _add_common_arguments(clear_parser)
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s: %(message)s",
    )

    try:
        # Import here to avoid slow startup
        from .app import PkgStageApp
        from .settings import default_config_path

        config_path = args.config or default_config_path()
        app = PkgStageApp.from_config(config_path, getattr(args, "releases", None))
        try:
            if args.command == "status":
                from .commands.status import run_status
                return run_status(args, app=app)
            elif args.command == "excluded-paths":
                from .commands.paths import run_excluded_paths
                return run_excluded_paths(args, app=app)
            elif args.command == "diff":
                from .commands.paths import run_diff
                return run_diff(args, app=app)
            elif args.command == "begin":
                from .commands.update import run_begin
                return run_begin(args, app=app)
            elif args.command == "stage":
                from .commands.update import run_stage
                return run_stage(args, app=app)
            elif args.command == "apply":
                from .commands.update import run_apply
                return run_apply(args, app=app)
            elif args.command == "post-apply":
                from .commands.update import run_post_apply
                return run_post_apply(args, app=app)
            elif args.command == "destroy":
                from .commands.update import run_destroy
                return run_destroy(args, app=app)
            elif args.command == "cron":
                from .commands.cron import run_cron
                return run_cron(args, app=app)
            elif args.command == "clear-failure":
                from .commands.failure import run_clear_failure
                return run_clear_failure(args, app=app)
            else:
                parser.print_help()
                return 1
        finally:
            app.close()
    except Exception as exc:  # pragma: no cover - exercised in CLI tests
        from .errors import exit_code_for_exception

        print(str(exc), file=sys.stderr)
        return exit_code_for_exception(exc)


if __name__ == "__main__":
    sys.exit(main())

"""
ChainReactor command line

Scan modules, edit the saved order / enabled flags / command overrides,
manage profiles, run a pipeline in the terminal or serve the dashboard API.
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

from chainreactor import __version__
from chainreactor.config import ChainReactorConfig
from chainreactor.exceptions import ChainReactorError
from chainreactor.logging_setup import create_logger
from chainreactor.pipeline.state import StreamKind
from chainreactor.service import CURRENT_PIPELINE, PipelineService
from chainreactor.services.module_scanner import stage_id_for


EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chainreactor",
        description="Run build scripts of many modules as one sequential pipeline"
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--root", type=Path, default=None, help="Project root (default: CHAINREACTOR_ROOT or cwd)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Also log to the console")

    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="List discovered modules in run order")

    run = sub.add_parser("run", help="Run a pipeline and stream its output")
    run.add_argument("name", nargs="?", default=CURRENT_PIPELINE,
                     help=f"Profile name (default: {CURRENT_PIPELINE!r}, the working list)")
    run.add_argument("--continue-on-failure", action="store_true", default=None,
                     help="Keep going after a failed module")
    run.add_argument("--timeout", type=float, default=None, help="Per-module timeout in seconds")

    # Layout edits apply to the working list unless --profile is given
    target = argparse.ArgumentParser(add_help=False)
    target.add_argument("--profile", default=CURRENT_PIPELINE, metavar="NAME",
                        help="Edit this profile instead of the working list")

    order = sub.add_parser("order", parents=[target],
                           help="Save the run order (working list: unlisted modules run after; "
                                "profile: exactly these modules)")
    order.add_argument("ids", nargs="+", metavar="ID")

    enable = sub.add_parser("enable", parents=[target], help="Enable a module")
    enable.add_argument("id", metavar="ID")
    disable = sub.add_parser("disable", parents=[target], help="Disable a module")
    disable.add_argument("id", metavar="ID")

    set_command = sub.add_parser("set-command", parents=[target], help="Override a module's command (omit to reset)")
    set_command.add_argument("id", metavar="ID")
    set_command.add_argument("shell_command", nargs="?", default=None, metavar="COMMAND")

    add_project = sub.add_parser("add-project", help="Add a project directory to the working list")
    add_project.add_argument("directory")
    remove = sub.add_parser("remove", help="Hide a module from the working list")
    remove.add_argument("id", metavar="ID")

    sub.add_parser("profiles", help="List saved profiles")
    save_profile = sub.add_parser("save-profile", help="Save the working list as a profile")
    save_profile.add_argument("name")
    rename_profile = sub.add_parser("rename-profile", help="Rename a profile")
    rename_profile.add_argument("name")
    rename_profile.add_argument("new_name")
    delete_profile = sub.add_parser("delete-profile", help="Delete a profile")
    delete_profile.add_argument("name")

    serve = sub.add_parser("serve", help="Serve the dashboard API")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = ChainReactorConfig.from_environment(root=args.root)
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_USAGE

    logger = create_logger(
        "chainreactor",
        config.logs_dir / "chainreactor.log",
        level=logging.DEBUG if args.verbose else config.log_level,
        console=args.verbose
    )
    service = PipelineService(config, logger=logger)

    handler = COMMANDS[args.command]
    try:
        return handler(service, args)
    except (ChainReactorError, ValueError) as e:
        print(f"✗ {e}", file=sys.stderr)
        return EXIT_USAGE


# ---------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------

def cmd_scan(service: PipelineService, args) -> int:
    stages = service.discover()
    layout = service.store.current_layout()
    if not stages:
        print(f"No modules found under {service.config.root}")
        return EXIT_OK
    for index, stage in enumerate(stages, 1):
        mark = "✓" if layout.is_enabled(stage.id) else " "
        override = layout.command_overrides.get(stage.id)
        command = f"{override} (override)" if override else stage.command
        print(f"[{mark}] {index:>3}. {stage.display_name}  {command}")
        print(f"        {stage.id}")
    return EXIT_OK


def cmd_run(service: PipelineService, args) -> int:
    def to_terminal(text: str, kind: StreamKind) -> None:
        stream = sys.stderr if kind == StreamKind.STDERR else sys.stdout
        stream.write(text)
        stream.flush()

    name = args.name
    service.start(
        name,
        continue_on_failure=args.continue_on_failure,
        timeout_seconds=args.timeout,
        output_sink=to_terminal
    )
    try:
        outcome = service.wait(name)
    except KeyboardInterrupt:
        print(f"\nStopping pipeline {name!r}...", file=sys.stderr)
        service.stop(name)
        outcome = service.wait(name)

    if outcome is None:
        return EXIT_FAILED
    return EXIT_OK if outcome.success else EXIT_FAILED


def _where(args) -> str:
    return "" if args.profile == CURRENT_PIPELINE else f" in profile {args.profile!r}"


def cmd_order(service: PipelineService, args) -> int:
    ids = [stage_id_for(i) for i in args.ids]
    service.set_order(args.profile, ids)
    print(f"Saved order of {len(ids)} module(s){_where(args)}")
    return EXIT_OK


def cmd_enable(service: PipelineService, args) -> int:
    service.set_enabled(args.profile, stage_id_for(args.id), True)
    print(f"Enabled {stage_id_for(args.id)}{_where(args)}")
    return EXIT_OK


def cmd_disable(service: PipelineService, args) -> int:
    service.set_enabled(args.profile, stage_id_for(args.id), False)
    print(f"Disabled {stage_id_for(args.id)}{_where(args)}")
    return EXIT_OK


def cmd_set_command(service: PipelineService, args) -> int:
    stage_id = stage_id_for(args.id)
    service.set_command(args.profile, stage_id, args.shell_command)
    command = service.layout_for(args.profile).command_overrides.get(stage_id)
    if command is None:
        print(f"Reset command of {stage_id}{_where(args)}")
    else:
        print(f"Command of {stage_id}{_where(args)}: {command}")
    return EXIT_OK


def cmd_add_project(service: PipelineService, args) -> int:
    directory = Path(args.directory).expanduser().resolve()
    if not directory.is_dir():
        print(f"✗ Not a directory: {directory}", file=sys.stderr)
        return EXIT_USAGE
    service.store.add_manual_project(str(directory), stage_id=stage_id_for(directory))
    print(f"Added {directory}")
    return EXIT_OK


def cmd_remove(service: PipelineService, args) -> int:
    stage_id = stage_id_for(args.id)
    service.store.remove_project(stage_id, directory=stage_id)
    print(f"Removed {stage_id}")
    return EXIT_OK


def cmd_profiles(service: PipelineService, args) -> int:
    summaries = service.profile_summaries()
    if not summaries:
        print("No profiles saved")
        return EXIT_OK
    for summary in summaries:
        running = " (running)" if summary["running"] else ""
        print(f"{summary['name']}: {summary['enabled_count']}/{summary['total_count']} module(s){running}")
    return EXIT_OK


def cmd_save_profile(service: PipelineService, args) -> int:
    layout = service.save_profile(args.name)
    print(f"Saved profile {args.name!r} ({layout.enabled_count()}/{len(layout.ordered_ids)} module(s))")
    return EXIT_OK


def cmd_rename_profile(service: PipelineService, args) -> int:
    service.rename_profile(args.name, args.new_name)
    print(f"Renamed profile {args.name!r} to {args.new_name.strip()!r}")
    return EXIT_OK


def cmd_delete_profile(service: PipelineService, args) -> int:
    service.delete_profile(args.name)
    print(f"Deleted profile {args.name!r}")
    return EXIT_OK


def cmd_serve(service: PipelineService, args) -> int:
    import uvicorn
    from chainreactor.dashboard.main import create_app

    uvicorn.run(create_app(service=service), host=args.host, port=args.port)
    return EXIT_OK


COMMANDS = {
    "scan": cmd_scan,
    "run": cmd_run,
    "order": cmd_order,
    "enable": cmd_enable,
    "disable": cmd_disable,
    "set-command": cmd_set_command,
    "add-project": cmd_add_project,
    "remove": cmd_remove,
    "profiles": cmd_profiles,
    "save-profile": cmd_save_profile,
    "rename-profile": cmd_rename_profile,
    "delete-profile": cmd_delete_profile,
    "serve": cmd_serve,
}


if __name__ == "__main__":
    sys.exit(main())

"""
Command-line interface for boxrun.

Usage:
    boxrun run "make -j8" --cwd blc          # in the sandbox container
    boxrun run "cmake --build build" --local # on the host
    boxrun exec "Build BLC"                  # predefined command by alias
    boxrun list
    boxrun history [--clear]
    boxrun add "./build.sh" --cwd blc --alias "Build BLC" [--local]
    boxrun remove "./build.sh"
    boxrun alias "./build.sh" "Build Everything"
    boxrun toggle-local "./build.sh"
    boxrun set-container deeproute-dev-x86-2004
    boxrun toggle-global-local
    boxrun clear-output

Ctrl-C while a command is running stops it (SIGTERM, then SIGKILL after the
grace period) and reports the invocation as cancelled.
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from boxrun.config import BoxrunConfig, ConfigStore
from boxrun.core.exceptions import BoxrunError
from boxrun.core.models import ExecutionRequest, InvocationResult, InvocationStatus
from boxrun.core.notifier import ConsoleNotifier
from boxrun.core.orchestrator import Orchestrator
from boxrun.core.output import ConsoleOutputSink, FileOutputSink, OutputSink, TeeOutputSink
from boxrun.services.catalog import CommandCatalog
from boxrun.services.history import CommandHistory

logger = logging.getLogger(__name__)

console = Console(highlight=False)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def build_sink(config: BoxrunConfig) -> OutputSink:
    console_sink = ConsoleOutputSink()
    if config.output_log is None:
        return console_sink
    return TeeOutputSink(console_sink, FileOutputSink(config.output_log))


def build_orchestrator(config: BoxrunConfig, notifier: ConsoleNotifier) -> Orchestrator:
    return Orchestrator(config, build_sink(config), notifier)


async def run_request(orchestrator: Orchestrator, request: ExecutionRequest) -> InvocationResult:
    """Execute one request; SIGINT is turned into the stop verb."""
    loop = asyncio.get_running_loop()
    stop_tasks: list[asyncio.Task] = []

    def on_interrupt() -> None:
        stop_tasks.append(loop.create_task(orchestrator.stop()))

    try:
        loop.add_signal_handler(signal.SIGINT, on_interrupt)
        handler_installed = True
    except (NotImplementedError, RuntimeError):
        handler_installed = False

    try:
        return await orchestrator.execute(request)
    finally:
        if handler_installed:
            loop.remove_signal_handler(signal.SIGINT)
        if stop_tasks:
            await asyncio.gather(*stop_tasks)
        orchestrator.dispose()


def exit_code_for(result: InvocationResult) -> int:
    if result.status is InvocationStatus.SUCCEEDED:
        return EXIT_OK
    if result.status is InvocationStatus.CANCELLED:
        return EXIT_CANCELLED
    return EXIT_FAILED


# =============================================================================
# Subcommands
# =============================================================================

def cmd_run(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    config = store.config
    catalog = CommandCatalog(store)
    request = catalog.request_for(args.command, cwd=args.cwd, execute_locally=args.local)
    CommandHistory(config.history_file, config.history_size).add(request.command, request.working_directory)
    result = asyncio.run(run_request(build_orchestrator(config, notifier), request))
    return exit_code_for(result)


def cmd_exec(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    config = store.config
    entry = CommandCatalog(store).find(args.name)
    if entry is None:
        notifier.error(f"No predefined command named '{args.name}'. See 'boxrun list'.")
        return EXIT_FAILED
    CommandHistory(config.history_file, config.history_size).add(entry.command, entry.cwd)
    result = asyncio.run(run_request(build_orchestrator(config, notifier), entry.to_request()))
    return exit_code_for(result)


def cmd_list(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    catalog = CommandCatalog(store)
    commands = catalog.commands
    if not commands:
        console.print("No predefined commands configured. Add them with 'boxrun add'.")
        return EXIT_OK

    table = Table(title="Predefined Commands")
    table.add_column("Mode", style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Directory", style="dim")
    table.add_column("Command")
    for entry in commands:
        mode = "[green]local[/green]" if catalog.is_local(entry) else "[blue]docker[/blue]"
        table.add_row(
            mode,
            escape(entry.display_name),
            escape(entry.cwd or ""),
            escape(entry.command) if entry.alias else "",
        )
    console.print(table)
    return EXIT_OK


def cmd_history(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    config = store.config
    history = CommandHistory(config.history_file, config.history_size)
    if args.clear:
        history.clear()
        notifier.info("History cleared")
        return EXIT_OK
    entries = history.entries()
    if not entries:
        console.print("No execution history")
        return EXIT_OK

    table = Table(title="Execution History")
    table.add_column("Time", style="dim")
    table.add_column("Command", style="cyan")
    table.add_column("Directory", style="dim")
    for item in entries:
        when = f"{datetime.fromtimestamp(item.timestamp):%Y-%m-%d %H:%M:%S}" if item.timestamp else ""
        table.add_row(when, escape(item.command), escape(item.cwd or ""))
    console.print(table)
    return EXIT_OK


def cmd_add(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    catalog = CommandCatalog(store)
    entry = catalog.add(args.command, cwd=args.cwd, alias=args.alias, execute_locally=args.local)
    mode = "Local" if catalog.is_local(entry) else "Docker"
    message = f"Command added: {entry.display_name}"
    if entry.cwd:
        message += f" (directory: {entry.cwd})"
    if store.config.global_execute_locally:
        message += f"\nExecution mode: {mode} (Global setting)"
    else:
        message += f"\nExecution mode: {mode}"
    notifier.info(message)
    return EXIT_OK


def cmd_remove(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    removed = CommandCatalog(store).remove(args.command)
    notifier.info(f"Command removed: {removed.command}")
    return EXIT_OK


def cmd_alias(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    updated = CommandCatalog(store).set_alias(args.command, args.alias)
    notifier.info(f"Alias updated: {updated.display_name}")
    return EXIT_OK


def cmd_toggle_local(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    updated = CommandCatalog(store).toggle_execute_locally(args.command)
    mode = "Local (Host)" if updated.execute_locally else "Docker Container"
    notifier.info(f"Command execution mode: {mode}\nCommand: {updated.command}")
    return EXIT_OK


def cmd_set_container(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    name = CommandCatalog(store).set_container(args.name)
    if name:
        notifier.info(
            f"Docker mode configured. Container name: {name}\n"
            f"Commands will execute in the container's {store.config.sandbox_root} directory"
        )
    else:
        notifier.info("Docker container cleared. Container mode is disabled.")
    return EXIT_OK


def cmd_toggle_global_local(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    local = CommandCatalog(store).toggle_global_execute_locally()
    mode = "Local (Host)" if local else "Docker Container"
    notifier.info(f"Global execution mode: {mode}")
    return EXIT_OK


def cmd_clear_output(args: argparse.Namespace, store: ConfigStore, notifier: ConsoleNotifier) -> int:
    build_orchestrator(store.config, notifier).clear_output()
    return EXIT_OK


# =============================================================================
# Entry point
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="boxrun",
        description="Run build commands on the host or in a sandbox container",
    )
    parser.add_argument("--config", "-c", help="Path to the YAML config file")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    parser.add_argument(
        "--yes", "-y",
        action="store_true",
        help="Answer yes to confirmation prompts",
    )
    sub = parser.add_subparsers(dest="subcommand", required=True)

    run = sub.add_parser("run", help="Execute a command")
    run.add_argument("command", help="Command text (quoted)")
    run.add_argument("--cwd", "-d", help="Directory relative to the workspace / sandbox root")
    run.add_argument("--local", "-l", action="store_true", help="Execute on the host")
    run.set_defaults(func=cmd_run)

    exec_ = sub.add_parser("exec", help="Execute a predefined command by alias or command text")
    exec_.add_argument("name")
    exec_.set_defaults(func=cmd_exec)

    sub.add_parser("list", help="List predefined commands").set_defaults(func=cmd_list)

    history = sub.add_parser("history", help="Show command history")
    history.add_argument("--clear", action="store_true", help="Clear history")
    history.set_defaults(func=cmd_history)

    add = sub.add_parser("add", help="Add a predefined command")
    add.add_argument("command")
    add.add_argument("--cwd", "-d")
    add.add_argument("--alias", "-a")
    add.add_argument("--local", "-l", action="store_true", help="Execute this command on the host")
    add.set_defaults(func=cmd_add)

    remove = sub.add_parser("remove", help="Remove a predefined command")
    remove.add_argument("command")
    remove.set_defaults(func=cmd_remove)

    alias = sub.add_parser("alias", help="Set (or clear) a command alias")
    alias.add_argument("command")
    alias.add_argument("alias", nargs="?", default=None)
    alias.set_defaults(func=cmd_alias)

    toggle = sub.add_parser("toggle-local", help="Toggle host execution for one command")
    toggle.add_argument("command")
    toggle.set_defaults(func=cmd_toggle_local)

    container = sub.add_parser("set-container", help="Configure the sandbox container name")
    container.add_argument("name", nargs="?", default="")
    container.set_defaults(func=cmd_set_container)

    sub.add_parser(
        "toggle-global-local", help="Toggle the global host-execution switch"
    ).set_defaults(func=cmd_toggle_global_local)

    sub.add_parser("clear-output", help="Clear the output log").set_defaults(func=cmd_clear_output)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(levelname)s - %(name)s - %(message)s",
    )
    notifier = ConsoleNotifier(assume_yes=args.yes)

    try:
        store = ConfigStore(args.config)
        return args.func(args, store, notifier)
    except BoxrunError as e:
        notifier.error(e.message)
        logger.error(f"CLI: kind={e.kind} {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())

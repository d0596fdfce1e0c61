#!/usr/bin/env python3
"""
CLI entry point for boxrun (direct execution from a checkout).

Usage:
    cd Project/

    ./venv/bin/python scripts/boxrun_cli.py run "make -j8" --cwd blc
    ./venv/bin/python scripts/boxrun_cli.py --help

Or, after ``pip install -e .``, simply ``boxrun ...``.
"""
import sys
from pathlib import Path

# Add project root to sys.path so that 'boxrun' can be imported as a package
_project_root = Path(__file__).parent.parent
sys.path.insert(0, str(_project_root))

from boxrun.cli.main import main  # noqa: E402


def main_wrapper() -> int:
    """Wrapper to provide helpful error messages."""
    # If no arguments provided, show usage hint
    if len(sys.argv) == 1:
        print("boxrun - Host / Sandbox Container Command Runner")
        print("\nUsage:")
        print("  ./venv/bin/python scripts/boxrun_cli.py [OPTIONS] SUBCOMMAND ...")
        print("\nExecution:")
        print("  run COMMAND [--cwd DIR] [--local]   Execute a command")
        print("  exec NAME                           Execute a predefined command")
        print("  history [--clear]                   Show or clear history")
        print("\nPredefined commands:")
        print("  list | add | remove | alias | toggle-local")
        print("\nSettings:")
        print("  set-container [NAME]                Configure the sandbox container")
        print("  toggle-global-local                 Toggle host execution for all commands")
        print("  clear-output                        Truncate the output log")
        print("\nOptions:")
        print("  --config, -c PATH        Config file (default: ~/.config/boxrun/boxrun.yaml)")
        print("  --log-level LEVEL        Logging level (DEBUG|INFO|WARNING|ERROR)")
        print("  --yes, -y                Stop a running command without asking")
        print("\nExamples:")
        print("  ./venv/bin/python scripts/boxrun_cli.py run \"./build.sh --compdb\" --cwd blc")
        print("  ./venv/bin/python scripts/boxrun_cli.py exec \"Build BLC\"")
        print("\nFor full help: ./venv/bin/python scripts/boxrun_cli.py --help")
        return 1

    return main()


if __name__ == "__main__":
    sys.exit(main_wrapper())

"""
boxrun - run build commands on the host or inside a sandbox container.

Streams command output, detects an updated compile_commands.json and rewrites
its sandbox paths to host paths.
"""

__version__ = "0.3.0"

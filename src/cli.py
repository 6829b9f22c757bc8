#!/usr/bin/env python3
"""CLI entry point for pcopy.

Server commands:
- setup: Create server config, key and certificate
- serve: Run the server

Client commands:
- join: Join a server (discovery + certificate pinning)
- copy / paste: Transfer clips
- verify: Check the saved key against the server
"""

import sys

from client.cli import COMMANDS as CLIENT_COMMANDS
from server.cli import COMMANDS as SERVER_COMMANDS

COMMANDS = {**SERVER_COMMANDS, **CLIENT_COMMANDS}


def print_usage():
    print("Usage: pcopy <command> [options]")
    print()
    print("Commands:")
    for name, (_, help_text) in COMMANDS.items():
        print(f"  {name:<8} {help_text}")
    print()
    print("Run 'pcopy <command> --help' for command-specific options.")


def main(argv=None) -> int:
    """Dispatch to a command handler.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code
    """
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] in ("-h", "--help"):
        print_usage()
        return 0

    command = argv[0]
    if command not in COMMANDS:
        print(f"Error: Unknown command '{command}'")
        print(f"Available commands: {', '.join(COMMANDS)}")
        return 1

    handler, _ = COMMANDS[command]
    return handler(argv[1:])


if __name__ == "__main__":
    sys.exit(main())

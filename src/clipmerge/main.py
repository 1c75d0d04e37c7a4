"""Subcommand dispatcher for clipmerge.

Usage:
    clipmerge merge   footage/day1 --output-dir merged/
    clipmerge list    footage/day1
    clipmerge formats
"""

import argparse
import sys


def main(args=None):
    parser = argparse.ArgumentParser(
        prog="clipmerge",
        description="Merge a folder of video clips into one continuous video.",
    )
    subparsers = parser.add_subparsers(dest="command")

    # Register subcommands. Each delegates to its own module's main().
    subparsers.add_parser("merge", help="Merge the clips of a folder into one file")
    subparsers.add_parser("list", help="Show the clips of a folder in merge order")
    subparsers.add_parser("formats", help="Show supported output formats")

    # Parse only the subcommand name, pass the rest to the subcommand's parser.
    parsed, remaining = parser.parse_known_args(args)

    if parsed.command is None:
        parser.print_help()
        sys.exit(1)

    if parsed.command == "merge":
        from .merge_cli import main as merge_main
        merge_main(remaining)
    elif parsed.command == "list":
        from .list_cli import main as list_main
        list_main(remaining)
    elif parsed.command == "formats":
        from .formats_cli import main as formats_main
        formats_main(remaining)


if __name__ == "__main__":
    main()

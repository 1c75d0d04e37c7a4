"""CLI for clip discovery — show the merge order without merging.

Usage:
    clipmerge list footage/day1
"""

import argparse
import sys

from .clips import discover_clips, suggest_base_name
from .errors import InputError


def main(args=None):
    parser = argparse.ArgumentParser(
        description="List the clips in a folder in merge order.",
    )
    parser.add_argument("folder", help="Folder with the clips")
    parsed = parser.parse_args(args)

    try:
        clips = discover_clips(parsed.folder)
    except (InputError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    print(f"{len(clips)} clips, output name '{suggest_base_name(clips)}':")
    for i, clip in enumerate(clips):
        print(f"  {i + 1:3d}. {clip.name}  ({clip.path})")


if __name__ == "__main__":
    main()

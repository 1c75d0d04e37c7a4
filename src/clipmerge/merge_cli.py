"""CLI for merging — play every clip in a folder into one video.

Clips are taken in natural name order (clip1, clip2, clip10). The output
is named after the folder the clips share, with the extension of the
negotiated format: <folder>.mp4, or <folder>.webm on the fallback.

Ctrl-C stops after the clip that is playing; whatever was merged so far
is still saved.

Usage:
    clipmerge merge footage/day1 --output-dir merged/
    clipmerge merge footage/day1 --name highlights --fit letterbox
    clipmerge merge --config merge.yaml
"""

import argparse
import asyncio
import signal
import sys

from .clips import discover_clips, suggest_base_name
from .common import configure_logging
from .config import load_merge_config
from .deliver import save_artifact
from .errors import InputError
from .frame_buffer import VALID_FITS
from .orchestrator import MergeOrchestrator
from .state import Phase, RunState


def _print_progress(state: RunState) -> None:
    print(f"  [{state.progress:3d}%] {state.message}", flush=True)


async def _merge(orchestrator: MergeOrchestrator, clips) -> RunState:
    """Run the merge with Ctrl-C wired to cancellation."""
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
    except NotImplementedError:
        # No loop signal handlers on Windows; Ctrl-C interrupts instead.
        pass
    try:
        return await orchestrator.run(clips)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except NotImplementedError:
            pass


def _parse_args(args=None):
    parser = argparse.ArgumentParser(
        description="Merge the video clips in a folder into a single file.",
    )
    parser.add_argument(
        "folder", nargs="?", default=None,
        help="Folder with the clips (optional if --config sets 'input')",
    )
    parser.add_argument(
        "--output-dir", default=None,
        help="Directory for the merged file (default: config output_dir or .)",
    )
    parser.add_argument(
        "--name", default=None,
        help="Output base name (default: the clips' folder name)",
    )
    parser.add_argument(
        "--config", default=None,
        help="Path to merge YAML config",
    )
    parser.add_argument(
        "--fps", type=float, default=None,
        help="Output frame rate (default: 30)",
    )
    parser.add_argument(
        "--bitrate", type=int, default=None,
        help="Target video bitrate in bits/s (default: 5000000)",
    )
    parser.add_argument(
        "--fit", choices=sorted(VALID_FITS), default=None,
        help="How clips with a different size than the first are drawn",
    )
    parser.add_argument(
        "--verbose", action="store_true",
        help="Debug logging",
    )
    return parser, parser.parse_args(args)


def main(args=None):
    parser, parsed = _parse_args(args)
    configure_logging(parsed.verbose)

    config = load_merge_config(parsed.config)
    if parsed.fps is not None:
        if parsed.fps <= 0:
            parser.error("--fps must be > 0")
        config["video"]["fps"] = int(parsed.fps) if parsed.fps.is_integer() else parsed.fps
    if parsed.bitrate is not None:
        if parsed.bitrate <= 0:
            parser.error("--bitrate must be > 0")
        config["video"]["bitrate"] = parsed.bitrate
    if parsed.fit is not None:
        config["video"]["fit"] = parsed.fit

    folder = parsed.folder or config["input"]
    if folder is None:
        parser.error("a clip folder is required (argument or config 'input')")

    try:
        clips = discover_clips(folder)
    except (InputError, FileNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    base_name = parsed.name or suggest_base_name(clips)
    output_dir = parsed.output_dir or config["output_dir"]
    print(f"Merging {len(clips)} clips from {folder} as '{base_name}'")

    orchestrator = MergeOrchestrator(config)
    orchestrator.state.select(len(clips), base_name)
    orchestrator.subscribe(_print_progress)
    state = asyncio.run(_merge(orchestrator, clips))

    if state.phase is Phase.ERROR:
        print(f"\n{state.message}", file=sys.stderr)
        sys.exit(1)

    artifact = state.artifact
    if artifact.size == 0:
        print("\nNothing was merged, no file written.")
        return

    out_path = save_artifact(artifact, output_dir, base_name)
    print(f"\nDone: {out_path} ({artifact.size / 1e6:.1f} MB, {artifact.mime_type})")


if __name__ == "__main__":
    main()

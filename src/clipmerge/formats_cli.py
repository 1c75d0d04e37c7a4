"""CLI for format negotiation — which output the local ffmpeg supports.

Usage:
    clipmerge formats
"""

import argparse

from .formats import FORMAT_PREFERENCES, FfmpegCapabilities, negotiate_format


def main(args=None):
    parser = argparse.ArgumentParser(
        description="Show the output format preferences and which one is used.",
    )
    parser.parse_args(args)

    caps = FfmpegCapabilities()
    for i, mime_type in enumerate(FORMAT_PREFERENCES):
        mark = "yes" if caps.is_type_supported(mime_type) else "no "
        print(f"  {i + 1}. [{mark}] {mime_type}")

    spec = negotiate_format(caps.is_type_supported)
    audio = spec.audio_codec or "container default"
    print(f"\nUsing: {spec.mime_type}")
    print(f"  muxer={spec.container} video={spec.video_codec} audio={audio} .{spec.extension}")


if __name__ == "__main__":
    main()

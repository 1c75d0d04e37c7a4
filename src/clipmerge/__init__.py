"""clipmerge — merge a folder of video clips into one continuous video.

Each clip is played in turn into a shared canvas and audio bus, and a
single ffmpeg encoder records the combined stream, so the output has one
unbroken video and audio timeline.
"""

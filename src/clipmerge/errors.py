"""Exception types for the merge pipeline.

Only DecodeError and EncodeFinalizeError end a run that has started.
AudioConnectError is recovered inside a playback session (the clip plays
video-only). InputError stops a run before anything is created.
"""


class ClipMergeError(Exception):
    """Base class for all clipmerge errors."""


class InputError(ClipMergeError):
    """The clip list is empty or otherwise unusable."""


class DecodeError(ClipMergeError):
    """A clip failed to open, decode or play.

    Carries the clip name so the run state can say which clip broke.
    """

    def __init__(self, clip_name: str, cause: object):
        self.clip_name = clip_name
        self.cause = cause
        super().__init__(f"Error playing file {clip_name}: {cause}")


class AudioConnectError(ClipMergeError):
    """A clip's audio could not be wired into the mixing bus."""


class EncodeFinalizeError(ClipMergeError):
    """The encoder failed while flushing or assembling the artifact."""


class AudioBusBusyError(ClipMergeError, RuntimeError):
    """A second audio source tried to connect while one is still live."""


class InvalidTransitionError(ClipMergeError, RuntimeError):
    """The pipeline state machine was asked for a transition it forbids."""

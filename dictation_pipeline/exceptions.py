"""
Exception types for the dictation pipeline.

Session-fatal errors (capture, model load) end the recording session.
Stage errors (selector, post-processing) are carried inside a StageResult
and never abort the session.
"""


class DictationError(Exception):
    """Base class for all pipeline errors."""


class CaptureError(DictationError):
    """The audio device could not be opened or failed mid-stream."""


class SegmentationError(DictationError):
    """A captured frame could not be decoded or classified."""


class ModelLoadError(DictationError):
    """The transcription model could not be loaded."""

    def __init__(self, model_id, message):
        super().__init__(f"Failed to load model '{model_id}': {message}")
        self.model_id = model_id


class TranscriptionError(DictationError):
    """Inference failed for a single segment."""


class SelectorTimeout(DictationError):
    """Domain scoring did not finish within its timeout."""


class SelectorFailure(DictationError):
    """The scoring strategy raised an error."""


class PostProcessError(DictationError):
    """The post-processing stage failed or timed out."""


class PackFormatError(DictationError):
    """A jargon pack document is unreadable as a whole."""


class ProfileError(DictationError):
    """Base class for profile registry violations."""


class DuplicateProfileError(ProfileError):
    def __init__(self, profile_id):
        super().__init__(f"Profile id '{profile_id}' already exists")
        self.profile_id = profile_id


class ReadOnlyProfileError(ProfileError):
    def __init__(self, profile_id):
        super().__init__(f"Built-in profile '{profile_id}' cannot be modified")
        self.profile_id = profile_id

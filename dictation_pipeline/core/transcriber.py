"""
Transcription functionality for the dictation pipeline.
Loads the faster-whisper model and transcribes speech segments through
the model lifecycle manager.
"""

import logging
import typing as t

from dictation_pipeline.exceptions import ModelLoadError, TranscriptionError
from dictation_pipeline.models.segment import Segment
from dictation_pipeline.utils.audio_utils import preprocess_segment
from dictation_pipeline.utils.text_processing import TextProcessor

logger = logging.getLogger(__name__)


def make_whisper_loader(device="cpu", num_workers=4):
    """Return a loader callable for ModelLifecycleManager that builds a WhisperModel."""

    def load_whisper_model(model_id):
        from faster_whisper import WhisperModel

        # float16 needs a GPU, int8 keeps CPU inference fast
        compute_type = "float16" if device == "cuda" else "int8"
        logger.info(f"Loading STT model {model_id} on {device} ({compute_type})")
        return WhisperModel(
            model_size_or_path=model_id,
            device=device,
            compute_type=compute_type,
            download_root=None,
            local_files_only=True,
            num_workers=num_workers,
        )

    return load_whisper_model


class TranscriptionEngine:
    """Turns a Segment into cleaned text using the managed model."""

    def __init__(self, model_manager, text_processor=None, language: t.Optional[str] = "en",
                 use_noise_reduction=False, beam_size=5):
        self.logger = logging.getLogger(__name__)
        self.model_manager = model_manager
        self.text_processor = text_processor or TextProcessor()
        self.language = language
        self.use_noise_reduction = use_noise_reduction
        self.beam_size = beam_size
        self.model_id: t.Optional[str] = None

    def update_settings(self, settings):
        self.model_id = settings.model_id
        self.language = settings.language
        self.use_noise_reduction = settings.use_noise_reduction

    def transcribe(self, segment: Segment, vocabulary_prompt: t.Optional[str] = None) -> str:
        """
        Transcribe a single segment.

        Args:
            segment: Speech segment with int16 samples
            vocabulary_prompt: Optional hint text listing expected terms

        Returns:
            Cleaned transcript, possibly empty

        Raises:
            ModelLoadError: The model is missing or failed to load
            TranscriptionError: Inference failed for this segment
        """
        try:
            audio = preprocess_segment(segment.samples, segment.sample_rate, self.use_noise_reduction)
        except Exception as e:
            raise TranscriptionError(f"Preprocessing failed for segment {segment.segment_id}: {e}") from e

        def infer(model):
            segments, info = model.transcribe(
                audio,
                beam_size=self.beam_size,
                word_timestamps=False,
                language=self.language,
                initial_prompt=vocabulary_prompt or None,
                vad_filter=False,
            )
            # The result is lazy, consume it while the model is still held
            texts = [s.text for s in segments]
            return texts, info

        try:
            texts, info = self.model_manager.run(infer, model_id=self.model_id)
        except ModelLoadError:
            raise
        except Exception as e:
            self.logger.error(f"Error during transcription of segment {segment.segment_id}: {e}")
            raise TranscriptionError(str(e)) from e

        if self.language and getattr(info, "language", None) and info.language != self.language:
            self.logger.warning(f"Detected language '{info.language}' differs from selected language '{self.language}'")

        raw = " ".join(text.strip() for text in texts)
        text = self.text_processor.post_process_text(raw)
        self.logger.info(f"Segment {segment.segment_id} transcribed: {text!r}")
        return text

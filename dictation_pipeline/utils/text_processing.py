"""
Text cleanup for raw recogniser output.
"""

import re
import logging

logger = logging.getLogger(__name__)

# Phrases the recogniser tends to produce on silence or noise
HALLUCINATIONS = [
    "thank you for watching",
    "thanks for watching",
    "please subscribe",
    "subtitles by the amara.org community",
    "[blank_audio]",
    "(silence)",
]

_SPACE_BEFORE_PUNCT = re.compile(r'\s+([,.;:!?])')


class TextProcessor:
    """Removes filler sounds, stutters and silence hallucinations."""

    def __init__(self):
        self.filler_words = [
            r'\bum+\b', r'\buh+\b', r'\ber+m*\b', r'\bah+\b', r'\bhm+\b', r'\bmhm\b',
        ]
        self.common_fixes = {
            r'\bi\'m\b': 'I\'m',
            r'\bi\'ll\b': 'I\'ll',
            r'\bi\'ve\b': 'I\'ve',
            r'\bi\'d\b': 'I\'d',
            r'\bwont\b': 'won\'t',
            r'\bcant\b': 'can\'t',
            r'\bdont\b': 'don\'t',
        }

    def is_hallucination(self, text):
        normalized = re.sub(r'[^\w\s\[\]().]', '', text.strip().lower()).strip(' .')
        return normalized in HALLUCINATIONS

    def post_process_text(self, text):
        """
        Clean up a raw transcript.

        Args:
            text: Raw transcribed text

        Returns:
            Cleaned text, or an empty string if nothing meaningful remains
        """
        text = text.strip()
        if not text:
            return text
        if self.is_hallucination(text):
            logger.debug(f"Dropping hallucinated transcript: {text!r}")
            return ""

        for word in self.filler_words:
            text = re.sub(word + r'[,.]?', '', text, flags=re.IGNORECASE)

        for pattern, replacement in self.common_fixes.items():
            text = re.sub(pattern, replacement, text)

        # Stutters: "the the the" -> "the"
        text = re.sub(r'\b(\w+)(\s+\1\b)+', r'\1', text, flags=re.IGNORECASE)

        text = re.sub(r'\s+', ' ', text).strip()
        text = _SPACE_BEFORE_PUNCT.sub(r'\1', text)
        text = text.lstrip(',.;: ')

        if text:
            text = text[0].upper() + text[1:]
        return text


def join_segment_texts(texts):
    """Join per-segment transcripts into one utterance."""
    joined = " ".join(t.strip() for t in texts if t and t.strip())
    joined = re.sub(r'\s+', ' ', joined)
    return _SPACE_BEFORE_PUNCT.sub(r'\1', joined).strip()

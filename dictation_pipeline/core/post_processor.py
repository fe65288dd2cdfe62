"""
Optional LLM rewrite of the corrected transcript.
Uses a local Ollama model to clean up dictation while keeping technical
terms, references and claims intact.
"""

import logging
import re
import threading
import typing as t

import ollama

from dictation_pipeline.core.prompts import BUILTIN_PROMPTS, DEFAULT_PROMPT_ID, get_prompt
from dictation_pipeline.exceptions import PostProcessError
from dictation_pipeline.models.stage_result import StageResult

BASE_SYSTEM_PROMPT = (
    "You are a dictation post-processor. Follow these rules strictly:\n"
    "1) Do not invent facts, events, names, owners, dates, or outcomes.\n"
    "2) Preserve the speaker's exact claims and intent.\n"
    "3) If a detail is uncertain or missing, keep it vague rather than guessing.\n"
    "4) Keep technical identifiers, code tokens, file paths, CLI flags, and URLs unchanged.\n"
    "5) Return ONLY the corrected text without explanations or additional commentary."
)

STYLE_INSTRUCTION = "\n\nOUTPUT STYLE: {instructions}"
JARGON_INSTRUCTION = "\n\nIMPORTANT: Use these exact spellings for technical terms: {terms}"
AT_FILE_INSTRUCTION = (
    "\n\nIMPORTANT: Preserve any @file-style references exactly "
    "(for example @main.rs or @\"my file.ts\"). Do not expand, remove, or rewrite these references."
)
SEGMENTS_INSTRUCTION = (
    "\n\nIMPORTANT: This text was transcribed from multiple independent audio segments split on silence. "
    "Sentences may be cut mid-way or repeated at the boundaries. "
    "Remove these artifacts and produce natural, flowing text that reflects what the speaker actually said."
)

_LEAKED_INSTRUCTIONS = [
    re.compile(r"\n?\s*IMPORTANT:\s*Use these exact spellings for technical terms:\s*.*?(?:\n\s*\n|$)",
               re.IGNORECASE | re.DOTALL),
    re.compile(r"\n?\s*IMPORTANT:\s*Preserve any @file-style references exactly\s*"
               r"\(for example @main\.rs or @\"my file\.ts\"\)\.\s*"
               r"Do not expand, remove, or rewrite these references\.\s*",
               re.IGNORECASE | re.DOTALL),
    re.compile(r"\n?\s*IMPORTANT:\s*This text was transcribed from multiple independent audio segments "
               r"split on silence\..*?Remove these artifacts and produce natural, flowing text that "
               r"reflects what the speaker actually said\.\s*",
               re.IGNORECASE | re.DOTALL),
]

MAX_PROMPT_TERMS = 60


def strip_leaked_instructions(text):
    """Remove prompt instructions the model echoed back into its answer."""
    for pattern in _LEAKED_INSTRUCTIONS:
        text = pattern.sub("\n", text)
    return text.strip()


class PostProcessor:
    """
    Rewrites dictated text with an Ollama model.

    ``process`` never raises: any failure is reported in the returned
    StageResult, whose value is then the unchanged input text.
    """

    def __init__(self, model_name: str = "llama3.2:3b", endpoint: str = "http://localhost:11434",
                 timeout_s: float = 10.0, enabled: bool = True, client=None, prompts=BUILTIN_PROMPTS):
        """
        Args:
            model_name: Name of the Ollama model to use
            endpoint: Ollama API endpoint
            timeout_s: Maximum time to wait for a reply
            enabled: When False, text passes through untouched
            client: Pre-built client (tests inject a fake)
            prompts: Output styles available by id
        """
        self.logger = logging.getLogger(__name__)
        self.model_name = model_name
        self.endpoint = endpoint
        self.timeout_s = timeout_s
        self.enabled = enabled
        self._client = client
        self.prompts = tuple(prompts)
        self.prompt_id = DEFAULT_PROMPT_ID

    @property
    def client(self):
        if self._client is None:
            self._client = ollama.Client(host=self.endpoint)
        return self._client

    def update_settings(self, settings):
        if settings.post_process_host != self.endpoint:
            self._client = None
        self.model_name = settings.post_process_model
        self.endpoint = settings.post_process_host
        self.timeout_s = settings.post_process_timeout_s
        self.enabled = settings.post_process_enabled
        self.prompt_id = settings.post_process_prompt_id

    def is_model_available(self, model_name: t.Optional[str] = None) -> bool:
        model_to_check = model_name or self.model_name
        try:
            models = self.client.list()
        except Exception as e:
            self.logger.warning(f"Error checking model availability: {e}")
            return False
        available = [m["model"] for m in models["models"]]
        if model_to_check not in available:
            self.logger.warning(f"Model {model_to_check} is not available in Ollama. Available models: {available}")
            return False
        return True

    def build_system_prompt(self, terms=(), preserve_at_refs=False, multi_segment=False,
                            prompt_id: t.Optional[str] = None) -> str:
        prompt = BASE_SYSTEM_PROMPT
        style = get_prompt(prompt_id or self.prompt_id, self.prompts)
        if style is None:
            self.logger.warning(f"Unknown post-process prompt {prompt_id or self.prompt_id!r}, using base rules only")
        else:
            prompt += STYLE_INSTRUCTION.format(instructions=style.instructions)
        terms = [term for term in terms if term][:MAX_PROMPT_TERMS]
        if terms:
            prompt += JARGON_INSTRUCTION.format(terms=", ".join(terms))
        if preserve_at_refs:
            prompt += AT_FILE_INSTRUCTION
        if multi_segment:
            prompt += SEGMENTS_INSTRUCTION
        return prompt

    def process(self, text: str, terms=(), preserve_at_refs=False, multi_segment=False,
                prompt_id: t.Optional[str] = None) -> StageResult:
        """
        Rewrite ``text``.

        Args:
            text: Corrected transcript
            terms: Active dictionary terms to enforce spelling of
            preserve_at_refs: Tell the model to keep @file references verbatim
            multi_segment: The text was joined from several segments
            prompt_id: Output style to apply, defaults to the configured one

        Returns:
            StageResult with the rewritten text, or the input text and a PostProcessError
        """
        if not self.enabled or not text or len(text.strip()) < 2:
            return StageResult.success(text)

        system_prompt = self.build_system_prompt(terms, preserve_at_refs, multi_segment, prompt_id)
        result = {}
        done = threading.Event()

        def run():
            try:
                result["text"] = self._call_ollama(system_prompt, text)
            except Exception as e:
                result["error"] = e
            finally:
                done.set()

        thread = threading.Thread(target=run, name="post-processor", daemon=True)
        thread.start()

        if not done.wait(timeout=self.timeout_s):
            self.logger.warning(f"Post-processing timed out after {self.timeout_s}s, using corrected transcript")
            return StageResult.failure(PostProcessError(f"Timed out after {self.timeout_s}s"), value=text)

        if "error" in result:
            self.logger.warning(f"Post-processing failed, using corrected transcript: {result['error']}")
            return StageResult.failure(PostProcessError(str(result["error"])), value=text)

        processed = result["text"]
        if not processed:
            self.logger.warning("Post-processing returned empty text, using corrected transcript")
            return StageResult.failure(PostProcessError("Empty response"), value=text)

        self.logger.debug(f"Post-processed: '{text}' -> '{processed}'")
        return StageResult.success(processed)

    def _call_ollama(self, system_prompt, text) -> str:
        response = self.client.chat(
            model=self.model_name,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": text},
            ],
            stream=False,
            options={
                "temperature": 0.1,
                "num_predict": 1000,
            },
        )
        content = response["message"]["content"]
        content = strip_leaked_instructions(content)
        # Models sometimes wrap the whole answer in quotes
        if len(content) >= 2 and content[0] == content[-1] and content[0] in "\"'":
            content = content[1:-1].strip()
        return content

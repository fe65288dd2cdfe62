"""
Automatic jargon profile selection.

Scores the raw transcript against each enabled profile and picks the
best matches, with hysteresis across consecutive utterances of one
recording session. Scoring is bounded by a timeout and never blocks or
breaks transcription.
"""

import logging
import re
import threading
import typing as t
from dataclasses import dataclass, field

from dictation_pipeline.exceptions import SelectorFailure, SelectorTimeout
from dictation_pipeline.models.stage_result import StageResult

_TOKEN_SPLIT = re.compile(r"[^\w+#]|_")

# Scores closer than this are treated as equal when comparing to the threshold
SCORE_EPSILON = 1e-9


def _clamp(value, low, high):
    return max(low, min(high, value))


@dataclass(frozen=True)
class SelectorConfig:
    enabled: bool = False
    top_k: int = 2
    min_score: float = 0.1
    hysteresis: float = 0.08
    timeout_ms: int = 120
    blend_manual: bool = True

    @classmethod
    def from_settings(cls, settings):
        return cls(
            enabled=bool(settings.selector_enabled),
            top_k=int(_clamp(settings.selector_top_k, 1, 5)),
            min_score=float(_clamp(settings.selector_min_score, 0.0, 1.0)),
            hysteresis=float(_clamp(settings.selector_hysteresis, 0.0, 1.0)),
            timeout_ms=int(_clamp(settings.selector_timeout_ms, 25, 2000)),
            blend_manual=bool(settings.selector_blend_manual),
        )


@dataclass
class SelectorState:
    """Selection memory for one recording session."""
    previously_selected: t.Set[str] = field(default_factory=set)
    last_scores: t.Dict[str, float] = field(default_factory=dict)

    def reset(self):
        self.previously_selected = set()
        self.last_scores = {}


@dataclass(frozen=True)
class SelectionResult:
    selected: t.Tuple[str, ...] = ()
    scores: t.Dict[str, float] = field(default_factory=dict)


def tokenize(text) -> t.Set[str]:
    """Lower-cased tokens longer than one character. ``+`` and ``#`` count as word characters (C++, C#)."""
    return {token.lower() for token in _TOKEN_SPLIT.split(text) if len(token) > 1}


def _overlap_ratio(context_tokens, candidate_tokens):
    if not candidate_tokens:
        return 0.0
    return len(candidate_tokens & context_tokens) / len(candidate_tokens)


def token_overlap_scorer(text, profile) -> float:
    """
    Default scoring strategy: how much of the profile's vocabulary appears in the text.

    Each term contributes the share of its tokens present in the transcript.
    Correction sources weigh 1.2 since they are what the recogniser actually
    writes, targets weigh 1.0. The sum is normalised by the profile size and
    clamped to [0, 1].
    """
    context = tokenize(text)
    if not context:
        return 0.0

    score = 0.0
    for term in profile.terms:
        score += _overlap_ratio(context, tokenize(term))
    for correction in profile.corrections:
        score += 1.2 * _overlap_ratio(context, tokenize(correction.source))
        score += 1.0 * _overlap_ratio(context, tokenize(correction.replacement))

    normalization = max(1.0, len(profile.terms) + 1.5 * len(profile.corrections))
    return _clamp(score / normalization, 0.0, 1.0)


def prompt_scorer(text, prompt) -> float:
    """Score a post-processing prompt: its id and name against the text, plus 0.2 per keyword found."""
    context = tokenize(text)
    if not context:
        return 0.0
    score = 1.8 * _overlap_ratio(context, tokenize(f"{prompt.id} {prompt.name}"))
    lowered = text.lower()
    score += 0.2 * sum(1 for keyword in prompt.keywords if keyword in lowered)
    return _clamp(score, 0.0, 1.0)


@dataclass
class PromptSelectionState:
    """Last automatically chosen post-processing prompt, kept across sessions."""
    prompt_id: t.Optional[str] = None
    score: float = 0.0


class DomainSelector:
    """Picks the jargon profiles that best match an utterance."""

    PROMPT_TIMEOUT_MS = 80
    PROMPT_CONTEXT_CHARS = 2000

    def __init__(self, scorer: t.Callable[[str, t.Any], float] = token_overlap_scorer,
                 prompt_scorer: t.Callable[[str, t.Any], float] = prompt_scorer):
        self.logger = logging.getLogger(__name__)
        self.scorer = scorer
        self.prompt_scorer = prompt_scorer

    def score_profiles(self, text, profiles) -> t.Dict[str, float]:
        scores = {}
        for profile in profiles:
            if not profile.enabled:
                continue
            score = _clamp(float(self.scorer(text, profile)), 0.0, 1.0)
            if score > 0.0:
                scores[profile.id] = score
        return scores

    def score_prompts(self, text, prompts) -> t.Dict[str, float]:
        scores = {}
        for prompt in prompts:
            score = _clamp(float(self.prompt_scorer(text, prompt)), 0.0, 1.0)
            if score > 0.0:
                scores[prompt.id] = score
        return scores

    def rank(self, scores, config: SelectorConfig, previously_selected) -> t.Tuple[str, ...]:
        """Apply min score, hysteresis and top-k to a set of scores."""
        effective = {}
        for profile_id, score in scores.items():
            bonus = config.hysteresis if profile_id in previously_selected else 0.0
            effective[profile_id] = score + bonus
        eligible = [pid for pid, score in effective.items() if score + SCORE_EPSILON >= config.min_score]
        eligible.sort(key=lambda pid: (-effective[pid], pid))
        return tuple(eligible[:config.top_k])

    def _score_bounded(self, score_fn, timeout_ms, name):
        """Run ``score_fn`` on a daemon thread. Returns (scores, error); both None on timeout."""
        outcome = {}
        done = threading.Event()

        def run_scoring():
            try:
                outcome["scores"] = score_fn()
            except Exception as e:
                outcome["error"] = e
            finally:
                done.set()

        worker = threading.Thread(target=run_scoring, name=name, daemon=True)
        worker.start()
        if not done.wait(timeout_ms / 1000.0):
            return None, None
        return outcome.get("scores"), outcome.get("error")

    def select(self, text, profiles, config: SelectorConfig, state: SelectorState) -> StageResult:
        """
        Score ``text`` against ``profiles`` and update ``state``.

        Returns:
            StageResult whose value is a SelectionResult. On timeout or scorer
            failure the value holds the previous selection and ``state`` is
            left untouched.
        """
        previous = SelectionResult(tuple(sorted(state.previously_selected)), dict(state.last_scores))
        profiles = tuple(profiles)

        scores, error = self._score_bounded(
            lambda: self.score_profiles(text, profiles), config.timeout_ms, "domain-selector")
        if error is not None:
            self.logger.warning(f"Domain scoring failed, keeping previous selection: {error}")
            return StageResult.failure(SelectorFailure(str(error)), value=previous)
        if scores is None:
            self.logger.warning(f"Domain selection timed out after {config.timeout_ms}ms, keeping previous selection")
            return StageResult.failure(SelectorTimeout(f"Scoring exceeded {config.timeout_ms}ms"), value=previous)

        selected = self.rank(scores, config, state.previously_selected)
        state.previously_selected = set(selected)
        state.last_scores = dict(scores)

        summary = ", ".join(f"{pid}:{scores[pid]:.3f}" for pid in selected) or "none"
        self.logger.info(f"Domain selection: {summary}")
        return StageResult.success(SelectionResult(selected, scores))

    def select_prompt(self, text, prompts, config: SelectorConfig, state: PromptSelectionState) -> StageResult:
        """
        Pick the post-processing prompt that best fits ``text``.

        The previous pick is kept unless a different prompt beats its score
        by at least ``config.hysteresis``.

        Returns:
            StageResult whose value is a prompt id, or None when no prompt
            reaches ``config.min_score`` or scoring timed out or failed.
        """
        context = text[:self.PROMPT_CONTEXT_CHARS]
        prompts = tuple(prompts)
        if not context.strip() or not prompts:
            return StageResult.success(None)

        timeout_ms = min(config.timeout_ms, self.PROMPT_TIMEOUT_MS)
        scores, error = self._score_bounded(
            lambda: self.score_prompts(context, prompts), timeout_ms, "prompt-selector")
        if error is not None:
            self.logger.warning(f"Prompt scoring failed: {error}")
            return StageResult.failure(SelectorFailure(str(error)))
        if scores is None:
            self.logger.warning(f"Prompt selection timed out after {timeout_ms}ms")
            return StageResult.failure(SelectorTimeout(f"Prompt scoring exceeded {timeout_ms}ms"))

        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        if not ranked or ranked[0][1] + SCORE_EPSILON < config.min_score:
            return StageResult.success(None)

        prompt_id, score = ranked[0]
        if state.prompt_id is not None and prompt_id != state.prompt_id \
                and score + SCORE_EPSILON < state.score + config.hysteresis:
            prompt_id, score = state.prompt_id, state.score

        state.prompt_id = prompt_id
        state.score = score
        self.logger.info(f"Post-process prompt selection: {prompt_id}:{score:.3f}")
        return StageResult.success(prompt_id)


def effective_profile_ids(manual_ids, selection: t.Optional[SelectionResult], config: SelectorConfig) -> t.List[str]:
    """Combine the user's enabled profiles with the automatic selection."""
    manual = list(dict.fromkeys(manual_ids))
    if not config.enabled or selection is None:
        return manual
    automatic = list(selection.selected)
    if config.blend_manual:
        return manual + [pid for pid in automatic if pid not in manual]
    return automatic if automatic else manual

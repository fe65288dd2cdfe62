"""
Jargon profiles and transcript correction.

Holds the built-in profile table, the registry that merges it with user
packs, the active dictionary computation and the corrector that rewrites
misheard terms.
"""

import logging
import re
import threading
import typing as t
from dataclasses import dataclass

from dictation_pipeline.exceptions import DuplicateProfileError, ReadOnlyProfileError
from dictation_pipeline.models.profile import Correction, Profile, Provenance

logger = logging.getLogger(__name__)

VOCABULARY_PROMPT_PREFIX = "Technical dictation. Common terms: "
VOCABULARY_PROMPT_MAX_CHARS = 1000


def _builtin(profile_id, label, terms, corrections):
    return Profile(
        id=profile_id,
        label=label,
        terms=tuple(terms),
        corrections=tuple(Correction(src, dst) for src, dst in corrections),
        provenance=Provenance.BUILTIN,
    )


BUILTIN_PROFILES = (
    _builtin("web_dev", "Web Development", [
        "TypeScript", "JavaScript", "React", "Next.js", "Tailwind", "Webpack", "Vite",
        "GraphQL", "REST", "API", "JSON", "CORS", "OAuth", "JWT", "WebSocket", "SSR",
        "CSR", "SSG", "CDN", "DNS", "Vercel", "Netlify", "Supabase", "Prisma",
        "PostgreSQL", "MongoDB", "Redis", "Docker", "Kubernetes", "CI/CD", "GitHub",
        "npm", "pnpm", "Bun",
    ], [
        ("next js", "Next.js"), ("post gres", "PostgreSQL"), ("type script", "TypeScript"),
        ("java script", "JavaScript"), ("web socket", "WebSocket"), ("graph QL", "GraphQL"),
        ("tail wind", "Tailwind"), ("web pack", "Webpack"),
    ]),
    _builtin("embedded", "Embedded Systems", [
        "UART", "SPI", "I2C", "GPIO", "RTOS", "JTAG", "FPGA", "ARM", "RISC-V", "STM32",
        "ESP32", "Arduino", "Raspberry Pi", "PWM", "ADC", "DAC", "DMA", "ISR", "HAL",
        "PCB", "VHDL", "Verilog", "GDB", "OpenOCD", "FreeRTOS", "Zephyr", "PlatformIO",
    ], [
        ("I two C", "I2C"), ("risk five", "RISC-V"), ("S T M 32", "STM32"),
        ("E S P 32", "ESP32"), ("you art", "UART"), ("G P I O", "GPIO"), ("jay tag", "JTAG"),
    ]),
    _builtin("data_science", "Data Science & ML", [
        "TensorFlow", "PyTorch", "NumPy", "Pandas", "Scikit-learn", "Jupyter", "Matplotlib",
        "Keras", "CUDA", "GPU", "TPU", "CNN", "RNN", "LSTM", "GAN", "NLP", "BERT", "GPT",
        "LLM", "RAG", "Hugging Face", "MLflow", "Spark", "Hadoop",
    ], [
        ("tensor flow", "TensorFlow"), ("pie torch", "PyTorch"), ("num pie", "NumPy"),
        ("hugging face", "Hugging Face"), ("sick it learn", "Scikit-learn"), ("L L M", "LLM"),
    ]),
    _builtin("devops", "DevOps & Cloud", [
        "Terraform", "Ansible", "Jenkins", "GitLab", "Prometheus", "Grafana", "Nginx",
        "Apache", "AWS", "GCP", "Azure", "S3", "EC2", "Lambda", "ECS", "EKS", "Helm",
        "Istio", "gRPC", "Kafka", "RabbitMQ", "Elasticsearch",
    ], [
        ("engine X", "Nginx"), ("terra form", "Terraform"), ("cube CTL", "kubectl"),
        ("G R P C", "gRPC"), ("E K S", "EKS"), ("E C S", "ECS"), ("E C two", "EC2"),
    ]),
    _builtin("coding", "Coding", [
        "TypeScript", "JavaScript", "Rust", "Python", "Go", "SQL", "PostgreSQL", "Redis",
        "Docker", "Kubernetes", "Git", "GitHub", "Pull Request", "Code Review", "Refactor",
        "Lint", "CI/CD", "API", "gRPC", "GraphQL",
    ], [
        ("type script", "TypeScript"), ("java script", "JavaScript"), ("post gres", "PostgreSQL"),
        ("G R P C", "gRPC"), ("graph Q L", "GraphQL"), ("pull request", "Pull Request"),
    ]),
    _builtin("business", "Business", [
        "Revenue", "Gross Margin", "Operating Expense", "Cash Flow", "Forecast", "Pipeline",
        "Conversion Rate", "Customer Retention", "Churn", "ARR", "MRR", "KPI", "OKR",
        "Roadmap", "Go-to-market", "ROI", "CAC", "LTV", "Stakeholder", "Quarterly Planning",
    ], [
        ("A R R", "ARR"), ("M R R", "MRR"), ("K P I", "KPI"), ("O K R", "OKR"),
        ("go to market", "Go-to-market"), ("R O I", "ROI"), ("C A C", "CAC"), ("L T V", "LTV"),
    ]),
    _builtin("law_enforcement", "Law Enforcement", [
        "Probable Cause", "Miranda", "Warrant", "Search Warrant", "Arrest Warrant", "BOLO",
        "Dispatch", "Patrol", "Incident Report", "Evidence", "Chain of Custody",
        "Body Camera", "Use of Force", "De-escalation", "Detention", "Felony",
        "Misdemeanor", "Citation", "Perimeter", "Suspect",
    ], [
        ("B O L O", "BOLO"), ("miranda rights", "Miranda"),
        ("chain of custody", "Chain of Custody"), ("body cam", "Body Camera"),
        ("use of force", "Use of Force"), ("de escalation", "De-escalation"),
    ]),
)

BUILTIN_PROFILE_IDS = frozenset(p.id for p in BUILTIN_PROFILES)


class ProfileRegistry:
    """Single table of built-in and user profiles keyed by id.

    Built-in entries are read-only. Ids are unique across both provenances.
    Readers take ``snapshot()``, an immutable tuple, so edits made while a
    pipeline pass is running never affect that pass.
    """

    def __init__(self, builtins=BUILTIN_PROFILES):
        self.logger = logging.getLogger(__name__)
        self._lock = threading.Lock()
        self._profiles: t.Dict[str, Profile] = {}
        for profile in builtins:
            self._profiles[profile.id] = profile

    def get(self, profile_id) -> t.Optional[Profile]:
        with self._lock:
            return self._profiles.get(profile_id)

    def ids(self) -> t.List[str]:
        with self._lock:
            return sorted(self._profiles)

    def user_profiles(self) -> t.List[Profile]:
        with self._lock:
            return sorted((p for p in self._profiles.values() if not p.is_builtin), key=lambda p: p.id)

    def add(self, profile: Profile):
        if profile.provenance is not Provenance.USER:
            raise ReadOnlyProfileError(profile.id)
        with self._lock:
            if profile.id in self._profiles:
                raise DuplicateProfileError(profile.id)
            self._profiles[profile.id] = profile

    def put(self, profile: Profile):
        """Add or replace a user profile."""
        with self._lock:
            existing = self._profiles.get(profile.id)
            if (existing is not None and existing.is_builtin) or profile.provenance is not Provenance.USER:
                raise ReadOnlyProfileError(profile.id)
            self._profiles[profile.id] = profile

    def remove(self, profile_id):
        with self._lock:
            existing = self._profiles.get(profile_id)
            if existing is None:
                return
            if existing.is_builtin:
                raise ReadOnlyProfileError(profile_id)
            del self._profiles[profile_id]

    def replace_user_profiles(self, profiles: t.Iterable[Profile]):
        """Swap the whole set of user profiles."""
        profiles = list(profiles)
        seen = set()
        for profile in profiles:
            if profile.id in BUILTIN_PROFILE_IDS or profile.provenance is not Provenance.USER:
                raise ReadOnlyProfileError(profile.id)
            if profile.id in seen:
                raise DuplicateProfileError(profile.id)
            seen.add(profile.id)
        with self._lock:
            kept = {pid: p for pid, p in self._profiles.items() if p.is_builtin}
            for profile in profiles:
                kept[profile.id] = profile
            self._profiles = kept

    def snapshot(self, disabled_ids: t.Iterable[str] = ()) -> t.Tuple[Profile, ...]:
        disabled = set(disabled_ids)
        with self._lock:
            profiles = sorted(self._profiles.values(), key=lambda p: p.id)
        return tuple(p.with_enabled(p.id not in disabled) for p in profiles)


@dataclass(frozen=True)
class ActiveDictionary:
    terms: t.Tuple[str, ...] = ()
    corrections: t.Tuple[Correction, ...] = ()


def parse_custom_corrections(entries) -> t.List[Correction]:
    """Turn ``[{"from": ..., "to": ...}]`` settings entries into Corrections, skipping invalid ones."""
    corrections = []
    for entry in entries or []:
        try:
            corrections.append(Correction(str(entry["from"]).strip(), str(entry["to"]).strip()))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping invalid custom correction {entry!r}: {e}")
    return corrections


def build_active_dictionary(profile_ids, profiles, custom_terms=(), custom_corrections=()) -> ActiveDictionary:
    """
    Merge the selected profiles with the user's custom vocabulary.

    Args:
        profile_ids: Ids of the profiles to include
        profiles: Profile snapshot to look the ids up in
        custom_terms: Free-form terms, listed first and winning on casing
        custom_corrections: Corrections overriding profile ones with the same source

    Returns:
        ActiveDictionary with de-duplicated terms and corrections sorted longest source first
    """
    by_id = {p.id: p for p in profiles}
    selected = [by_id[pid] for pid in sorted(set(profile_ids)) if pid in by_id and by_id[pid].enabled]

    terms = []
    seen_terms = set()
    for term in list(custom_terms) + [term for p in selected for term in p.terms]:
        term = term.strip()
        key = term.lower()
        if term and key not in seen_terms:
            seen_terms.add(key)
            terms.append(term)

    corrections: t.Dict[str, Correction] = {}
    for profile in selected:
        for correction in profile.corrections:
            corrections.setdefault(correction.source.lower(), correction)
    for correction in custom_corrections:
        corrections[correction.source.lower()] = correction

    ordered = sorted(corrections.values(), key=lambda c: (-len(c.source), c.source.lower()))
    return ActiveDictionary(terms=tuple(terms), corrections=tuple(ordered))


def build_vocabulary_prompt(terms, max_chars=VOCABULARY_PROMPT_MAX_CHARS) -> str:
    """Hint text for the recogniser listing as many terms as fit in ``max_chars``."""
    available = max_chars - len(VOCABULARY_PROMPT_PREFIX) - 1
    parts = []
    length = 0
    for term in terms:
        addition = len(term) + (2 if parts else 0)
        if length + addition > available:
            break
        parts.append(term)
        length += addition
    if not parts:
        return ""
    return VOCABULARY_PROMPT_PREFIX + ", ".join(parts) + "."


PROTECTED_SPAN_PATTERN = re.compile("|".join([
    r"@[\w\-./]+",                            # @file tokens
    r"`[^`]+`",                               # inline code
    r"https?://\S+",                          # URLs
    r"(?:~/|/[\w\-]+(?:/[\w\-.*]+)+)",        # file paths
    r"(?:^|(?<=\s))--?[\w\-]+=?(?:[\w\-./]+)?",  # CLI flags
]))

_PLACEHOLDER = "⟦S{}⟧"


class JargonCorrector:
    """Applies dictionary corrections to a transcript.

    Sources and replacements share one alternation, matched in a single
    left-to-right pass with the longest alternative first. Sources match
    case-insensitively; a replacement matches only as written and maps to
    itself, so text that is already corrected stays put and ``apply`` is
    idempotent. The output of one correction is never fed to another.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._cache_key = None
        self._cache = None

    def _compile(self, corrections):
        key = tuple(corrections)
        if key != self._cache_key:
            active = [c for c in corrections if c.source != c.replacement]
            lookup = {}
            for c in sorted(active, key=lambda c: (-len(c.source), c.source.lower())):
                lookup.setdefault(c.source.lower(), c.replacement)
            kept = {c.replacement for c in active}

            # (text, is_source); replacements win ties against sources of equal length
            alternatives = {(r, False) for r in kept}
            alternatives.update((c.source, True) for c in active)
            ordered = sorted(alternatives, key=lambda a: (-len(a[0]), a[1], a[0]))
            if ordered:
                body = "|".join(
                    re.escape(text) if is_source else f"(?-i:{re.escape(text)})"
                    for text, is_source in ordered
                )
                pattern = re.compile(rf"(?<!\w)(?:{body})(?!\w)", re.IGNORECASE)
            else:
                pattern = None
            self._cache_key = key
            self._cache = (pattern, lookup, kept)
        return self._cache

    def apply(self, text: str, corrections) -> str:
        if not text or not corrections:
            return text
        pattern, lookup, kept = self._compile(corrections)
        if pattern is None:
            return text

        spans = []

        def mask(match):
            spans.append(match.group(0))
            return _PLACEHOLDER.format(len(spans) - 1)

        def replace(match):
            found = match.group(0)
            if found in kept:
                return found
            return lookup.get(found.lower(), found)

        masked = PROTECTED_SPAN_PATTERN.sub(mask, text)
        corrected = pattern.sub(replace, masked)

        restored = corrected
        for index in range(len(spans) - 1, -1, -1):
            placeholder = _PLACEHOLDER.format(index)
            if placeholder not in restored:
                self.logger.warning(f"Placeholder {placeholder} was lost, returning original text")
                return text
            restored = restored.replace(placeholder, spans[index])
        return restored

"""
Inline @file reference expansion.

Finds ``@name`` and ``@"quoted name"`` tokens in the final transcript,
resolves them against an index of the workspace and appends a bounded
snippet of every uniquely resolved text file.
"""

import codecs
import logging
import os
import re
import threading
import time
import typing as t
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

SKIP_DIRS = {".git", "node_modules", "dist", "build", "target", ".next", "__pycache__", ".venv"}
MAX_ENTRIES = 50_000
MAX_DEPTH = 10
INDEX_CACHE_TTL_S = 5.0

MAX_LINES = 200
MAX_BYTES = 25_000
BINARY_SNIFF_BYTES = 8192

SNIPPET_SEPARATOR = "-" * 60

_TOKEN_PATTERN = re.compile(r'@(?:"([^"]+)"|([A-Za-z0-9_\-./]+))')
_TRAILING_PUNCT = ".,;:!?)]}"

EXTENSION_LANGUAGES = {
    "rs": "rust", "ts": "typescript", "tsx": "typescript", "js": "javascript",
    "jsx": "javascript", "py": "python", "go": "go", "java": "java", "c": "c",
    "h": "c", "cpp": "cpp", "hpp": "cpp", "cc": "cpp", "rb": "ruby", "sh": "bash",
    "bash": "bash", "json": "json", "yaml": "yaml", "yml": "yaml", "toml": "toml",
    "md": "markdown", "html": "html", "css": "css", "sql": "sql", "swift": "swift",
    "kt": "kotlin", "kts": "kotlin",
}


class ResolutionOutcome(Enum):
    RESOLVED = "resolved"
    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    BINARY = "binary"


@dataclass(frozen=True)
class AtToken:
    raw: str
    name: str
    start: int
    end: int


@dataclass(frozen=True)
class TokenResolution:
    token: AtToken
    outcome: ResolutionOutcome
    path: t.Optional[str] = None
    candidates: t.Tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkspaceIndex:
    root: str
    files: t.Tuple[str, ...]
    indexed_at: float
    truncated: bool = False


@dataclass(frozen=True)
class ExpansionResult:
    history_text: str
    delivered_text: str
    resolutions: t.Tuple[TokenResolution, ...] = field(default_factory=tuple)


def parse_tokens(text) -> t.List[AtToken]:
    """Find @references. An ``@`` glued to a preceding word (an email address) is not a token."""
    tokens = []
    for match in _TOKEN_PATTERN.finditer(text):
        start = match.start()
        if start > 0 and (text[start - 1].isalnum() or text[start - 1] == "_"):
            continue
        quoted, bare = match.group(1), match.group(2)
        if quoted is not None:
            name = quoted.strip()
            end = match.end()
        else:
            name = bare.rstrip(_TRAILING_PUNCT)
            end = match.start(2) + len(name)
        if not name:
            continue
        tokens.append(AtToken(raw=text[start:end], name=name, start=start, end=end))
    return tokens


def find_git_root(start) -> t.Optional[str]:
    current = os.path.abspath(start)
    while True:
        if os.path.exists(os.path.join(current, ".git")):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            return None
        current = parent


def resolve_workspace_root(configured_root=None, require_git=True, cwd=None) -> t.Optional[str]:
    """Pick the directory @references resolve against, or None to skip expansion."""
    root = configured_root or cwd or os.getcwd()
    root = os.path.abspath(os.path.expanduser(root))
    if not os.path.isdir(root):
        logger.warning(f"Workspace root {root} is not a directory")
        return None
    if require_git and find_git_root(root) is None:
        logger.info(f"Workspace root {root} is not inside a Git repository, skipping @file expansion")
        return None
    return root


class WorkspaceIndexer:
    """Builds and caches WorkspaceIndex objects per root."""

    def __init__(self, max_entries=MAX_ENTRIES, max_depth=MAX_DEPTH, ttl_s=INDEX_CACHE_TTL_S,
                 clock=time.monotonic):
        self.logger = logging.getLogger(__name__)
        self.max_entries = max_entries
        self.max_depth = max_depth
        self.ttl_s = ttl_s
        self.clock = clock
        self._cache: t.Dict[str, t.Tuple[float, WorkspaceIndex]] = {}
        self._lock = threading.Lock()

    def get(self, root) -> WorkspaceIndex:
        root = os.path.abspath(root)
        now = self.clock()
        with self._lock:
            cached = self._cache.get(root)
            if cached and now - cached[0] < self.ttl_s:
                return cached[1]
        index = self.build(root)
        with self._lock:
            self._cache[root] = (now, index)
        return index

    def invalidate(self, root=None):
        with self._lock:
            if root is None:
                self._cache.clear()
            else:
                self._cache.pop(os.path.abspath(root), None)

    def build(self, root) -> WorkspaceIndex:
        files = []
        truncated = False
        for dirpath, dirnames, filenames in os.walk(root):
            rel_dir = os.path.relpath(dirpath, root)
            depth = 0 if rel_dir == "." else rel_dir.count(os.sep) + 1
            if depth >= self.max_depth:
                dirnames[:] = []
            else:
                dirnames[:] = sorted(d for d in dirnames if d not in SKIP_DIRS)
            for name in sorted(filenames):
                if len(files) >= self.max_entries:
                    truncated = True
                    break
                rel = name if rel_dir == "." else os.path.join(rel_dir, name)
                files.append(rel.replace(os.sep, "/"))
            if truncated:
                self.logger.warning(f"Workspace index for {root} capped at {self.max_entries} files")
                break
        self.logger.debug(f"Indexed {len(files)} files under {root}")
        return WorkspaceIndex(root=root, files=tuple(files), indexed_at=time.time(), truncated=truncated)


def _match(name, files) -> t.Tuple[str, ...]:
    name = name.strip("/")
    if name.startswith("./"):
        name = name[2:]
    basename_matches = tuple(f for f in files if f.rsplit("/", 1)[-1] == name)
    if basename_matches:
        return basename_matches
    exact = tuple(f for f in files if f == name)
    if exact:
        return exact
    return tuple(f for f in files if f.endswith("/" + name))


def resolve_token(token: AtToken, index: WorkspaceIndex) -> TokenResolution:
    candidates = _match(token.name, index.files)
    if not candidates:
        return TokenResolution(token, ResolutionOutcome.NOT_FOUND)
    if len(candidates) > 1:
        return TokenResolution(token, ResolutionOutcome.AMBIGUOUS, candidates=candidates)
    path = candidates[0]
    if is_binary_file(os.path.join(index.root, path)):
        return TokenResolution(token, ResolutionOutcome.BINARY, path=path, candidates=candidates)
    return TokenResolution(token, ResolutionOutcome.RESOLVED, path=path, candidates=candidates)


def is_binary_file(path) -> bool:
    try:
        with open(path, "rb") as f:
            head = f.read(BINARY_SNIFF_BYTES)
    except OSError as e:
        logger.warning(f"Cannot read {path}: {e}")
        return True
    if b"\x00" in head:
        return True
    try:
        codecs.getincrementaldecoder("utf-8")().decode(head, final=False)
    except UnicodeDecodeError:
        return True
    return False


def language_for(path) -> str:
    ext = path.rsplit(".", 1)[-1].lower() if "." in path.rsplit("/", 1)[-1] else ""
    return EXTENSION_LANGUAGES.get(ext, "")


def read_snippet(root, rel_path) -> t.Optional[str]:
    """Read at most MAX_LINES lines and MAX_BYTES bytes of a UTF-8 file."""
    try:
        with open(os.path.join(root, rel_path), "rb") as f:
            raw = f.read(MAX_BYTES + 1)
    except OSError as e:
        logger.warning(f"Cannot read {rel_path}: {e}")
        return None

    truncated = len(raw) > MAX_BYTES
    try:
        # An incomplete multi-byte character at the cut is dropped
        content = codecs.getincrementaldecoder("utf-8")().decode(raw[:MAX_BYTES], final=not truncated)
    except UnicodeDecodeError:
        return None

    lines = content.splitlines()
    if len(lines) > MAX_LINES:
        lines = lines[:MAX_LINES]
        truncated = True
    body = "\n".join(lines)
    if truncated:
        body += "\n... (truncated)"
    return body


def format_snippet(rel_path, content) -> str:
    return (
        f"\n{SNIPPET_SEPARATOR}\n"
        f"### Referenced file: {rel_path}\n"
        f"```{language_for(rel_path)}\n"
        f"{content}\n"
        f"```"
    )


class TokenExpander:
    """Appends snippets for the @references in a transcript."""

    def __init__(self, indexer: t.Optional[WorkspaceIndexer] = None):
        self.logger = logging.getLogger(__name__)
        self.indexer = indexer or WorkspaceIndexer()

    def expand_in_root(self, text, root: t.Optional[str]) -> ExpansionResult:
        if root is None or "@" not in text:
            return ExpansionResult(history_text=text, delivered_text=text)
        return self.expand(text, self.indexer.get(root))

    def expand(self, text, index: WorkspaceIndex) -> ExpansionResult:
        """
        Resolve every token in ``text`` against ``index``.

        The tokens stay verbatim; one snippet per distinct resolved file is
        appended after the text.
        """
        tokens = parse_tokens(text)
        if not tokens:
            return ExpansionResult(history_text=text, delivered_text=text)

        resolutions = []
        snippets = []
        included = set()
        for token in tokens:
            resolution = resolve_token(token, index)
            resolutions.append(resolution)
            if resolution.outcome is not ResolutionOutcome.RESOLVED:
                self.logger.info(f"@{token.name}: {resolution.outcome.value}")
                continue
            if resolution.path in included:
                continue
            content = read_snippet(index.root, resolution.path)
            if content is None:
                resolutions[-1] = TokenResolution(token, ResolutionOutcome.BINARY, path=resolution.path,
                                                  candidates=resolution.candidates)
                continue
            included.add(resolution.path)
            snippets.append(format_snippet(resolution.path, content))
            self.logger.info(f"@{token.name} resolved to {resolution.path}")

        delivered = text + "".join(snippets)
        return ExpansionResult(history_text=text, delivered_text=delivered, resolutions=tuple(resolutions))

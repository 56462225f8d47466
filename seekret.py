#!/usr/bin/env python3
"""
===================================================================
SEEKRET - SENSITIVE DATA CRAWLER FOR GITHUB ORGANIZATIONS
===================================================================

PURPOSE:
    Enumerates every public repository owned by a GitHub organization,
    clones each one into a disposable working tree, and scans the files
    for content that looks like secrets or credentials. Produces a
    per-repository report of the exact byte ranges that look sensitive.

FEATURES:
    ✓ Async crawl with a bounded pool of concurrent repository workers
    ✓ Pluggable detection registry (regex rules + Shannon entropy scan)
    ✓ Overlap-aware merging of spans reported by different strategies
    ✓ Binary / oversized file skipping to keep false positives down
    ✓ Per-repository .credignore exclusion manifests
    ✓ Guaranteed cleanup of cloned trees (success, failure or Ctrl+C)
    ✓ Failure isolation: one bad repository or file never stops the run
    ✓ Custom regex pattern support
    ✓ Structured JSON logging and JSON report output

DETECTION METHODS:
    1. Pattern matching (regex) for well-known secret shapes
    2. Shannon entropy over sliding windows of token-like strings
    3. Placeholder filtering for generic "key = value" assignments

SECURITY NOTICE:
    This crawler NEVER attempts to use discovered credentials. It only
    scans the current working tree of each repository, never history.

REQUIREMENTS:
    Install dependencies:
        python3 -m pip install -e .
    or
        pip install PyGithub aiofiles tqdm

USAGE:
    export GITHUB_TOKEN="ghp_your_token_here"     # optional, raises rate limits
    skrt --org your-org-name
    skrt --org your-org-name --output report.json --log-format json

CONFIGURATION:
    Set via environment variables (CLI flags take precedence):
    - GITHUB_TOKEN: GitHub OAuth2/personal access token
    - TARGET_ORG: Organization name to crawl
    - MAX_CONCURRENT_REPOS: Parallel repository workers (default: 5)
    - MAX_CONCURRENT_FILES: Parallel file scans per repository (default: 50)
    - CLONE_DEPTH: Git shallow clone depth (default: 1)
    - MAX_FILE_SIZE_MB: Skip files larger than this (default: 10)
    - ENTROPY_THRESHOLD: Fraction of the maximum entropy a token window
      must exceed (default: 0.75)
    - PRINTABLE_ENTROPY_THRESHOLD: Same, for tokens using punctuation
      outside the base64 alphabet (default: 0.85)
    - OVERLAP_FRACTION: Overlap needed to coalesce spans (default: 0.5)
    - CUSTOM_PATTERNS_FILE: Path to custom regex patterns JSON
    - SEEKRET_WORKSPACE_DIR: Where scratch clones are created
    - OUTPUT_FILE: Report output path (default: seekret_report.json)
    - LOG_FORMAT: text|json (default: text)

===================================================================
"""
import argparse
import asyncio
import json
import logging
import math
import os
import re
import shutil
import signal
import sys
import tempfile
import time
from abc import ABC, abstractmethod
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import (
    Any, AsyncIterator, Awaitable, Callable, Dict, FrozenSet, Iterable,
    Iterator, List, Optional, Sequence, Tuple, Union
)

# Third-party imports with error handling
try:
    import aiofiles
    from github import Auth, Github, GithubException, RateLimitExceededException
    from tqdm import tqdm
except ImportError as e:
    print(f"ERROR: Missing required dependency: {e}")
    print("Install with: pip install PyGithub aiofiles tqdm")
    sys.exit(1)

# ===================================================================
# CONFIGURATION & CONSTANTS
# ===================================================================

SCANNER_VERSION = "1.0.0"

# Environment-driven configuration
GITHUB_TOKEN = os.environ.get("GITHUB_TOKEN")
TARGET_ORG = os.environ.get("TARGET_ORG", "")
MAX_CONCURRENT_REPOS = int(os.environ.get("MAX_CONCURRENT_REPOS", "5"))
MAX_CONCURRENT_FILES = int(os.environ.get("MAX_CONCURRENT_FILES", "50"))
CLONE_DEPTH = int(os.environ.get("CLONE_DEPTH", "1"))
CLONE_TIMEOUT_SECONDS = int(os.environ.get("CLONE_TIMEOUT_SECONDS", "300"))
SCAN_TIMEOUT_SECONDS = int(os.environ.get("SCAN_TIMEOUT_SECONDS", "600"))
MAX_FILE_SIZE_MB = int(os.environ.get("MAX_FILE_SIZE_MB", "10"))
ENTROPY_THRESHOLD = float(os.environ.get("ENTROPY_THRESHOLD", "0.75"))
PRINTABLE_ENTROPY_THRESHOLD = float(os.environ.get("PRINTABLE_ENTROPY_THRESHOLD", "0.85"))
OVERLAP_FRACTION = float(os.environ.get("OVERLAP_FRACTION", "0.5"))
CUSTOM_PATTERNS_FILE = os.environ.get("CUSTOM_PATTERNS_FILE", "")
WORKSPACE_DIR = os.environ.get("SEEKRET_WORKSPACE_DIR", "")
OUTPUT_FILE = os.environ.get("OUTPUT_FILE", "seekret_report.json")
LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")  # text|json

# GitHub API retry behaviour
GITHUB_API_BACKOFF_BASE = float(os.environ.get("GITHUB_API_BACKOFF_BASE", "2.0"))
GITHUB_API_MAX_RETRIES = int(os.environ.get("GITHUB_API_MAX_RETRIES", "5"))
MAX_RATE_LIMIT_WAIT_SECONDS = 3600

# Operational constants
MAX_FILE_SIZE_BYTES = MAX_FILE_SIZE_MB * 1024 * 1024
CLONE_RETRY_ATTEMPTS = 3
CLONE_RETRY_DELAY_SECONDS = 2

# Per-repository exclusion manifest. Newline delimited list of paths relative
# to the repository root; blank lines and lines starting with '#' are skipped.
CREDIGNORE_FILE = ".credignore"

# Binary file extensions skipped without reading (performance optimization)
BINARY_FILE_EXTENSIONS = {
    # Images
    '.png', '.jpg', '.jpeg', '.gif', '.bmp', '.ico', '.webp', '.tiff', '.psd',
    # Videos
    '.mp4', '.avi', '.mov', '.wmv', '.flv', '.mkv', '.webm', '.m4v',
    # Audio
    '.mp3', '.wav', '.flac', '.aac', '.ogg', '.wma', '.m4a',
    # Archives
    '.zip', '.tar', '.gz', '.bz2', '.7z', '.rar', '.xz', '.tgz',
    # Executables & Libraries
    '.exe', '.dll', '.so', '.dylib', '.bin', '.deb', '.rpm',
    # Compiled/Binary
    '.pyc', '.pyo', '.class', '.o', '.a', '.obj', '.lib',
    # Documents (binary formats)
    '.pdf', '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx', '.odt', '.ods',
    # Fonts
    '.ttf', '.otf', '.woff', '.woff2', '.eot',
    # Database
    '.db', '.sqlite', '.sqlite3', '.mdb',
    # Other
    '.iso', '.dmg', '.img', '.pickle', '.pkl', '.parquet',
}

# Binary detection
BINARY_SAMPLE_SIZE = 8192         # Bytes inspected for binary detection (8KB)
BINARY_NON_TEXT_THRESHOLD = 0.30  # 30% non-text bytes threshold
TEXT_BYTES = bytes(sorted({7, 8, 9, 10, 12, 13, 27} | set(range(0x20, 0x100)) - {0x7f}))

# Entropy scan. Thresholds are fractions of the highest entropy a window can
# reach: log2(min(window length, alphabet size)).
MIN_ENTROPY_CALC_LENGTH = 2
ENTROPY_MIN_LENGTH = 20           # Shortest token considered by the entropy scan
ENTROPY_WINDOW = 40               # Sliding window size for long tokens
ENTROPY_WINDOW_STEP = 8
ENTROPY_MAX_CONFIDENCE = 0.6
MIXED_CASE_MIN_FRACTION = 0.25    # Minority letter case share for digit-free windows
SEPARATOR_BYTES = b"/_-"
SEPARATOR_MAX_FRACTION = 1 / 6    # Path and word separators allowed per window
HEX_CHARS = b"0123456789abcdefABCDEF"
BASE64_CHARS = b"ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/=_-"
HEX_ALPHABET_SIZE = 16
BASE64_ALPHABET_SIZE = 64
PRINTABLE_ALPHABET_SIZE = 94      # '!' through '~'
GENERIC_VALUE_MIN_ENTROPY = 3.5   # Floor for values of generic assignments
CUSTOM_PATTERN_CONFIDENCE = 0.75

# Known fake/example credential terms
PLACEHOLDER_TERMS = (
    b"example", b"changeme", b"dummy", b"redacted", b"xxxxx",
    b"testkey", b"samplekey", b"placeholder", b"fake", b"demo",
    b"your_key_here", b"insert_key_here", b"replace_me",
)


@dataclass(frozen=True)
class DetectorConfig:
    """Immutable tuning knobs shared by every detection strategy."""
    entropy_threshold: float = ENTROPY_THRESHOLD
    printable_entropy_threshold: float = PRINTABLE_ENTROPY_THRESHOLD
    entropy_min_length: int = ENTROPY_MIN_LENGTH
    entropy_window: int = ENTROPY_WINDOW
    entropy_window_step: int = ENTROPY_WINDOW_STEP
    overlap_fraction: float = OVERLAP_FRACTION
    max_file_size_bytes: int = MAX_FILE_SIZE_BYTES
    binary_sample_size: int = BINARY_SAMPLE_SIZE
    binary_non_text_threshold: float = BINARY_NON_TEXT_THRESHOLD

    def __post_init__(self):
        if not 0.0 <= self.overlap_fraction <= 1.0:
            raise ValueError(f"overlap_fraction must be within [0, 1], got {self.overlap_fraction}")
        for name in ("entropy_threshold", "printable_entropy_threshold"):
            if not 0.0 <= getattr(self, name) <= 1.0:
                raise ValueError(f"{name} must be within [0, 1], got {getattr(self, name)}")
        for name in ("entropy_min_length", "entropy_window", "entropy_window_step", "binary_sample_size"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.max_file_size_bytes < 0:
            raise ValueError(f"max_file_size_bytes must be >= 0, got {self.max_file_size_bytes}")


@dataclass(frozen=True)
class CrawlConfig:
    """Concurrency, timeout and workspace settings for one crawl."""
    max_concurrent_repos: int = MAX_CONCURRENT_REPOS
    max_concurrent_files: int = MAX_CONCURRENT_FILES
    clone_depth: int = CLONE_DEPTH
    clone_timeout_seconds: float = CLONE_TIMEOUT_SECONDS
    clone_retries: int = CLONE_RETRY_ATTEMPTS
    clone_retry_delay_seconds: float = CLONE_RETRY_DELAY_SECONDS
    scan_timeout_seconds: float = SCAN_TIMEOUT_SECONDS
    workspace_dir: Optional[Path] = Path(WORKSPACE_DIR) if WORKSPACE_DIR else None
    skip_binary_extensions: bool = True
    show_progress: bool = True

    def __post_init__(self):
        for name in ("max_concurrent_repos", "max_concurrent_files", "clone_depth", "clone_retries"):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.clone_timeout_seconds <= 0 or self.scan_timeout_seconds <= 0:
            raise ValueError("timeouts must be positive")


# ===================================================================
# LOGGING SETUP
# ===================================================================

class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        # Add custom fields
        if hasattr(record, 'repo'):
            log_data["repo"] = record.repo
        if hasattr(record, 'path'):
            log_data["path"] = record.path
        if hasattr(record, 'finding_count'):
            log_data["finding_count"] = record.finding_count

        return json.dumps(log_data)


def setup_logging(log_format: str = "text") -> logging.Logger:
    """Setup logging with either text or JSON format."""
    logger = logging.getLogger(__name__)
    logger.setLevel(logging.INFO)

    # Remove existing handlers
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)

    if log_format == "json":
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))

    logger.addHandler(handler)
    return logger


logger = setup_logging(LOG_FORMAT)


# ===================================================================
# ERRORS
# ===================================================================

class SeekretError(Exception):
    """Base class for crawl errors."""


class ListingError(SeekretError):
    """Repository enumeration failed. Fatal: the crawl cannot continue."""


class WorkspaceError(SeekretError):
    """The top-level scratch workspace could not be created. Fatal."""


class RepositoryError(SeekretError):
    """A single repository could not be processed. The crawl skips it."""


class MaterializationError(RepositoryError):
    """Cloning or preparing a repository working tree failed."""


class ScanError(RepositoryError):
    """Walking a materialized repository failed."""


# ===================================================================
# DATA MODEL
# ===================================================================

@dataclass(frozen=True, order=True)
class ByteSpan:
    """Half-open [start, end) byte range inside one file's content."""
    start: int
    end: int

    def __post_init__(self):
        if self.start < 0 or self.end <= self.start:
            raise ValueError(f"Invalid byte span [{self.start}, {self.end})")

    def __len__(self) -> int:
        return self.end - self.start

    def overlap(self, other: "ByteSpan") -> int:
        return max(0, min(self.end, other.end) - max(self.start, other.start))

    def union(self, other: "ByteSpan") -> "ByteSpan":
        return ByteSpan(min(self.start, other.start), max(self.end, other.end))


@dataclass(frozen=True)
class Detection:
    """One span reported by one detection strategy."""
    span: ByteSpan
    detector_id: str
    confidence: float


@dataclass(frozen=True)
class Finding:
    """Spans in one file attributed to one detector, sorted and disjoint."""
    path: str
    spans: Tuple[ByteSpan, ...]
    detector_id: str
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "detector_id": self.detector_id,
            "confidence": self.confidence,
            "spans": [{"start": s.start, "end": s.end} for s in self.spans],
        }


@dataclass
class RepositoryReport:
    name: str
    findings: List[Finding] = field(default_factory=list)

    @property
    def has_findings(self) -> bool:
        return bool(self.findings)


@dataclass(frozen=True)
class RepositoryFailure:
    name: str
    stage: str  # materialize|scan
    reason: str


@dataclass
class CrawlReport:
    """
    Output of one crawl.

    Only repositories with at least one finding are kept in
    ``repositories``. Repositories that could not be processed are listed
    in ``failures``. ``complete`` is False when the crawl was cancelled.
    """
    organization: str
    repositories: List[RepositoryReport] = field(default_factory=list)
    failures: List[RepositoryFailure] = field(default_factory=list)
    repositories_listed: int = 0
    repositories_targeted: int = 0
    repositories_scanned: int = 0
    complete: bool = True

    def __iter__(self) -> Iterator[RepositoryReport]:
        return iter(self.repositories)

    def __len__(self) -> int:
        return len(self.repositories)

    def add(self, repo_report: RepositoryReport) -> bool:
        """Append a repository report if it has findings. Returns True if kept."""
        if not repo_report.has_findings:
            return False
        self.repositories.append(repo_report)
        return True

    @property
    def total_findings(self) -> int:
        return sum(len(r.findings) for r in self.repositories)


@dataclass(frozen=True)
class IgnoreSet:
    """Relative paths excluded from one repository's scan."""
    paths: FrozenSet[str] = frozenset()
    manifest_path: str = CREDIGNORE_FILE

    def __contains__(self, relative_path: str) -> bool:
        return relative_path == self.manifest_path or relative_path in self.paths


@dataclass(frozen=True)
class RepositoryRecord:
    """Flattened repository listing entry."""
    name: Optional[str]
    clone_url: Optional[str]

    @property
    def is_target(self) -> bool:
        return bool(self.name) and bool(self.clone_url)


# ===================================================================
# DETECTION UTILITIES
# ===================================================================

def shannon_entropy(data: Union[bytes, str]) -> float:
    """
    Calculate Shannon entropy of a byte string (bits per byte).

    High entropy (>4.5) often indicates cryptographic material.
    Low entropy (<3.5) typically indicates human-readable text.

    Args:
        data: Bytes or string to analyze

    Returns:
        Entropy value in bits per symbol (0.0 to 8.0 for bytes)
    """
    if not data or len(data) < MIN_ENTROPY_CALC_LENGTH:
        return 0.0

    length = len(data)
    return -sum(
        (count / length) * math.log2(count / length)
        for count in Counter(data).values()
    )


def alphabet_size(token: bytes) -> int:
    """Size of the smallest known alphabet (hex, base64, printable) covering ``token``."""
    if not token.translate(None, HEX_CHARS):
        return HEX_ALPHABET_SIZE
    if not token.translate(None, BASE64_CHARS):
        return BASE64_ALPHABET_SIZE
    return PRINTABLE_ALPHABET_SIZE


def normalized_entropy(token: bytes) -> float:
    """
    Shannon entropy as a fraction of the most a token of this length and
    alphabet can carry.

    A random 32 character base64 string sits near 4.6 bits per byte while a
    random 40 character one sits near 4.8, so a fixed bit threshold treats
    them differently. Dividing by log2(min(len, alphabet)) puts both on the
    same 0..1 scale.
    """
    if len(token) < MIN_ENTROPY_CALC_LENGTH:
        return 0.0
    ceiling = math.log2(min(len(token), alphabet_size(token)))
    return shannon_entropy(token) / ceiling


def looks_generated(token: bytes) -> bool:
    """
    Return True when ``token`` is shaped like generated key material.

    Letters are required along with either a digit or both letter cases in
    comparable amounts, and path or word separators must stay rare. This
    keeps identifiers, paths and plain numbers out.
    """
    upper = lower = digits = separators = 0
    for byte in token:
        if 0x41 <= byte <= 0x5a:
            upper += 1
        elif 0x61 <= byte <= 0x7a:
            lower += 1
        elif 0x30 <= byte <= 0x39:
            digits += 1
        elif byte in SEPARATOR_BYTES:
            separators += 1

    letters = upper + lower
    if not letters or separators > SEPARATOR_MAX_FRACTION * len(token):
        return False
    return digits > 0 or min(upper, lower) >= MIXED_CASE_MIN_FRACTION * letters


def is_placeholder(value: bytes) -> bool:
    """Check if value contains known fake/example credential terms."""
    value_lower = value.lower()
    return any(term in value_lower for term in PLACEHOLDER_TERMS)


def looks_binary(
    content: bytes,
    sample_size: int = BINARY_SAMPLE_SIZE,
    threshold: float = BINARY_NON_TEXT_THRESHOLD
) -> bool:
    """
    Detect binary content from its first ``sample_size`` bytes.

    A NUL byte is a strong binary indicator. Otherwise the content counts
    as binary when more than ``threshold`` of the sample is non-text bytes
    (control characters other than common whitespace).
    """
    sample = content[:sample_size]
    if not sample:
        return False

    if b'\x00' in sample:
        return True

    non_text_count = len(sample.translate(None, TEXT_BYTES))
    return non_text_count / len(sample) > threshold


def is_scannable(content: bytes, config: DetectorConfig) -> bool:
    """Return False for empty, oversized or binary content."""
    if not content or len(content) > config.max_file_size_bytes:
        return False
    return not looks_binary(content, config.binary_sample_size, config.binary_non_text_threshold)


# ===================================================================
# DETECTION STRATEGIES
# ===================================================================

class DetectionStrategy(ABC):
    """
    A stateless detection rule.

    Implementations hold only immutable configuration and must be safe to
    call from several threads at once. ``detector_id`` must be unique
    within a registry.
    """
    detector_id: str

    @abstractmethod
    def find(self, content: bytes) -> Iterable[Detection]:
        """Yield raw detections for ``content``."""


@dataclass(frozen=True)
class PatternStrategy(DetectionStrategy):
    """
    Regular-expression rule for a well-known secret shape.

    When ``group`` is set and participates in the match, only that group's
    bytes are reported. ``min_entropy`` and ``skip_placeholders`` filter
    the reported value, which keeps generic rules quiet on prose and on
    documentation examples.
    """
    detector_id: str
    pattern: re.Pattern
    confidence: float
    group: Optional[str] = None
    min_entropy: Optional[float] = None
    skip_placeholders: bool = False

    @classmethod
    def compile(cls, detector_id: str, regex: Union[str, bytes], confidence: float, **kwargs) -> "PatternStrategy":
        if isinstance(regex, str):
            regex = regex.encode("utf-8")
        return cls(detector_id, re.compile(regex), confidence, **kwargs)

    def find(self, content: bytes) -> Iterator[Detection]:
        for match in self.pattern.finditer(content):
            if self.group and match.group(self.group) is not None:
                start, end = match.span(self.group)
            else:
                start, end = match.span()
            if end <= start:
                continue

            value = content[start:end]
            if self.min_entropy is not None and shannon_entropy(value) <= self.min_entropy:
                continue
            if self.skip_placeholders and is_placeholder(value):
                continue

            yield Detection(ByteSpan(start, end), self.detector_id, self.confidence)


@dataclass(frozen=True)
class EntropyStrategy(DetectionStrategy):
    """
    Flags high-entropy runs inside token-like strings.

    Two passes run over the content. The first takes runs of base64/url-safe
    characters at least ``min_length`` long. The second takes runs of any
    printable non-space ASCII at least one window long that the first pass
    cannot see because they contain other punctuation, and holds them to
    ``printable_threshold``. Runs that already hold a first-pass token are
    left to the first pass.

    Tokens no longer than ``window`` are scored whole; longer tokens are
    scored with a sliding window and adjacent flagged windows are joined
    into one run. Each run becomes one span.
    """
    threshold: float = ENTROPY_THRESHOLD
    printable_threshold: float = PRINTABLE_ENTROPY_THRESHOLD
    min_length: int = ENTROPY_MIN_LENGTH
    window: int = ENTROPY_WINDOW
    step: int = ENTROPY_WINDOW_STEP
    detector_id: str = "high_entropy_string"
    token_pattern: re.Pattern = field(init=False, repr=False, compare=False)
    printable_pattern: re.Pattern = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "token_pattern", re.compile(rb"[A-Za-z0-9+/=_-]{%d,}" % self.min_length))
        object.__setattr__(self, "printable_pattern", re.compile(rb"[\x21-\x7e]{%d,}" % max(self.min_length, self.window)))

    def find(self, content: bytes) -> Iterator[Detection]:
        for match in self.token_pattern.finditer(content):
            yield from self._detections(match.group(0), match.start(), self.threshold)

        for match in self.printable_pattern.finditer(content):
            token = match.group(0)
            if self.token_pattern.search(token):
                continue  # holds a token the first pass already scored
            yield from self._detections(token, match.start(), self.printable_threshold)

    def _detections(self, token: bytes, offset: int, threshold: float) -> Iterator[Detection]:
        for run_start, run_end, peak in self.high_entropy_runs(token, threshold):
            yield Detection(
                ByteSpan(offset + run_start, offset + run_end),
                self.detector_id,
                round(ENTROPY_MAX_CONFIDENCE * min(1.0, peak), 3),
            )

    @staticmethod
    def score(window: bytes) -> float:
        return normalized_entropy(window) if looks_generated(window) else 0.0

    def high_entropy_runs(self, token: bytes, threshold: Optional[float] = None) -> List[Tuple[int, int, float]]:
        """Return (start, end, peak_score) runs relative to ``token``."""
        if threshold is None:
            threshold = self.threshold

        length = len(token)
        if length <= self.window:
            score = self.score(token)
            return [(0, length, score)] if score > threshold else []

        starts = list(range(0, length - self.window + 1, self.step))
        if starts[-1] != length - self.window:
            starts.append(length - self.window)

        runs: List[Tuple[int, int, float]] = []
        for start in starts:
            score = self.score(token[start:start + self.window])
            if score <= threshold:
                continue
            end = start + self.window
            if runs and start <= runs[-1][1]:
                run_start, run_end, peak = runs[-1]
                runs[-1] = (run_start, max(run_end, end), max(peak, score))
            else:
                runs.append((start, end, score))
        return runs


# Default pattern rules. Confidence is the rule's own precision estimate and
# decides which detector keeps a coalesced span.
DEFAULT_PATTERN_STRATEGIES: Tuple[PatternStrategy, ...] = (
    PatternStrategy.compile(
        "private_key_header",
        rb"-----BEGIN (?:RSA |DSA |EC |OPENSSH |ENCRYPTED |PGP )?PRIVATE KEY(?: BLOCK)?-----",
        0.95,
    ),
    PatternStrategy.compile(
        "aws_access_key_id",
        rb"\b(?:AKIA|ASIA|AGPA|AIDA)[A-Z0-9]{16}\b",
        0.90,
    ),
    PatternStrategy.compile(
        "github_token",
        rb"\b(?:gh[pousr]_[A-Za-z0-9]{36}|github_pat_[A-Za-z0-9_]{82})\b",
        0.90,
    ),
    PatternStrategy.compile(
        "slack_token",
        rb"\bxox[pbar]-[0-9]{10,13}-[0-9]{10,13}-[A-Za-z0-9]{24,32}\b",
        0.90,
    ),
    PatternStrategy.compile(
        "stripe_live_key",
        rb"\b(?:sk|rk)_live_[A-Za-z0-9]{24,}\b",
        0.90,
    ),
    PatternStrategy.compile(
        "google_api_key",
        rb"\bAIza[0-9A-Za-z_-]{35}(?![0-9A-Za-z_-])",
        0.85,
    ),
    PatternStrategy.compile(
        "connection_string",
        rb"\b(?:postgres(?:ql)?|mysql|mariadb|mongodb(?:\+srv)?|rediss?|amqps?)"
        rb"://[^\s:@/'\"]+:[^\s@/'\"]+@[\w.-]+(?::\d+)?",
        0.85,
    ),
    PatternStrategy.compile(
        "jwt",
        rb"\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}",
        0.70,
    ),
    PatternStrategy.compile(
        "generic_secret_assignment",
        rb"(?i)\b(?:password|passwd|pwd|passphrase|secret|token|api[_-]?key|apikey"
        rb"|access[_-]?key|secret[_-]?key|access[_-]?token|auth[_-]?token"
        rb"|client[_-]?secret|private[_-]?key)\b[\"']?\s*(?:[:=]|\s+is\s+)\s*[\"']?"
        rb"(?P<val>[A-Za-z0-9\-._/+=]{8,200})",
        0.60,
        group="val",
        min_entropy=GENERIC_VALUE_MIN_ENTROPY,
        skip_placeholders=True,
    ),
)


def load_custom_patterns(filepath: str) -> List[PatternStrategy]:
    """
    Load custom regex strategies from a JSON file.

    Expected format:
    {
      "patterns": [
        {
          "name": "CUSTOM_API_KEY",
          "regex": "myapi_[A-Za-z0-9]{32}",
          "confidence": 0.8
        }
      ]
    }

    Args:
        filepath: Path to custom patterns JSON file

    Returns:
        List of PatternStrategy, one per valid entry
    """
    custom_patterns = []

    try:
        with open(filepath, 'r', encoding='utf-8') as f:
            data = json.load(f)

        for pattern_def in data.get('patterns', []):
            name = pattern_def.get('name', 'CUSTOM_PATTERN')
            regex = pattern_def.get('regex')

            if not regex:
                logger.warning(f"Skipping pattern {name}: no regex provided")
                continue

            try:
                confidence = float(pattern_def.get('confidence', CUSTOM_PATTERN_CONFIDENCE))
                custom_patterns.append(PatternStrategy.compile(name, regex, confidence))
                logger.info(f"Loaded custom pattern: {name}")
            except (re.error, TypeError, ValueError) as e:
                logger.error(f"Invalid definition for pattern {name}: {e}")

    except FileNotFoundError:
        logger.warning(f"Custom patterns file not found: {filepath}")
    except json.JSONDecodeError as e:
        logger.error(f"Invalid JSON in custom patterns file: {e}")
    except (OSError, AttributeError) as e:
        logger.error(f"Error loading custom patterns: {e}")

    return custom_patterns


# ===================================================================
# SPAN MERGING
# ===================================================================

def _should_coalesce(a: Detection, b: Detection, overlap_fraction: float) -> bool:
    overlap = a.span.overlap(b.span)
    if overlap == 0:
        return False
    if a.detector_id == b.detector_id:
        return True
    return overlap > overlap_fraction * min(len(a.span), len(b.span))


def _resolve_cluster(
    cluster: List[Detection],
    overlap_fraction: float,
    rank: Dict[str, int]
) -> List[Detection]:
    if len(cluster) == 1:
        return cluster

    def priority(d: Detection) -> tuple:
        return (-d.confidence, rank.get(d.detector_id, len(rank)), d.span.start, d.span.end)

    accepted: List[Tuple[tuple, Detection]] = []
    for detection in sorted(cluster, key=priority):
        key, current = priority(detection), detection
        merged = True
        while merged:
            merged = False
            for i, (other_key, other) in enumerate(accepted):
                if not _should_coalesce(other, current, overlap_fraction):
                    continue
                # The union keeps the identity of the higher-priority side.
                key, winner = min((other_key, other), (key, current), key=lambda kv: kv[0])
                current = Detection(other.span.union(current.span), winner.detector_id, winner.confidence)
                del accepted[i]
                merged = True
                break
        accepted.append((key, current))

    return [d for _, d in accepted]


def merge_detections(
    detections: Iterable[Detection],
    overlap_fraction: float = OVERLAP_FRACTION,
    rank: Optional[Dict[str, int]] = None
) -> List[Detection]:
    """
    Coalesce raw detections from several strategies.

    Transitively overlapping detections form a cluster. Inside a cluster,
    two detections are merged when they overlap by more than
    ``overlap_fraction`` of the shorter one, or when they come from the
    same detector and overlap at all. The merged span keeps the detector
    id and confidence of the higher-confidence side (ties go to the lower
    ``rank``, i.e. the earlier registered strategy).

    Returns:
        Detections sorted by (start, end, detector_id)
    """
    rank = rank or {}
    ordered = sorted(
        detections,
        key=lambda d: (d.span.start, d.span.end, rank.get(d.detector_id, len(rank)), d.detector_id)
    )

    merged: List[Detection] = []
    cluster: List[Detection] = []
    cluster_end = 0
    for detection in ordered:
        if cluster and detection.span.start >= cluster_end:
            merged.extend(_resolve_cluster(cluster, overlap_fraction, rank))
            cluster = []
        if not cluster:
            cluster_end = detection.span.end
        cluster.append(detection)
        cluster_end = max(cluster_end, detection.span.end)

    if cluster:
        merged.extend(_resolve_cluster(cluster, overlap_fraction, rank))

    return sorted(merged, key=lambda d: (d.span.start, d.span.end, d.detector_id))


def group_findings(path: str, detections: Sequence[Detection]) -> List[Finding]:
    """Group merged detections of one file into one Finding per detector."""
    grouped: Dict[str, List[Detection]] = {}
    for detection in detections:
        grouped.setdefault(detection.detector_id, []).append(detection)

    return [
        Finding(
            path=path,
            spans=tuple(sorted(d.span for d in items)),
            detector_id=detector_id,
            confidence=max(d.confidence for d in items),
        )
        for detector_id, items in grouped.items()
    ]


# ===================================================================
# DETECTOR & REGISTRY
# ===================================================================

class SensitiveContentDetector:
    """
    Runs a fixed, ordered set of strategies over raw file bytes.

    The strategy tuple is captured at construction, so the detector never
    changes after it is built. ``detect`` is a pure function of its input
    and may be called concurrently from worker threads.
    """

    def __init__(self, strategies: Iterable[DetectionStrategy], config: Optional[DetectorConfig] = None):
        self.config = config or DetectorConfig()
        self._strategies = tuple(strategies)
        self._rank = {s.detector_id: i for i, s in enumerate(self._strategies)}

    @property
    def strategies(self) -> Tuple[DetectionStrategy, ...]:
        return self._strategies

    def detect(self, content: bytes) -> List[Detection]:
        """Return merged detections for ``content``, sorted by start offset."""
        if not is_scannable(content, self.config):
            return []

        raw: List[Detection] = []
        for strategy in self._strategies:
            try:
                raw.extend(strategy.find(content))
            except Exception as e:
                logger.warning(f"Strategy {strategy.detector_id} failed: {e}")

        return merge_detections(raw, self.config.overlap_fraction, self._rank)

    def find_sensitive_spans(self, content: bytes) -> List[ByteSpan]:
        """Return only the byte spans of ``detect``."""
        return [d.span for d in self.detect(content)]


class DetectorRegistry:
    """Ordered collection of detection strategies keyed by detector id."""

    def __init__(self, strategies: Iterable[DetectionStrategy] = ()):
        self._strategies: Dict[str, DetectionStrategy] = {}
        for strategy in strategies:
            self.register(strategy)

    def register(self, strategy: DetectionStrategy) -> DetectionStrategy:
        if not isinstance(strategy, DetectionStrategy):
            raise TypeError(f"Expected a DetectionStrategy, got {type(strategy).__name__}")
        if strategy.detector_id in self._strategies:
            raise ValueError(f"Detector already registered: {strategy.detector_id}")
        self._strategies[strategy.detector_id] = strategy
        return strategy

    def unregister(self, detector_id: str) -> DetectionStrategy:
        try:
            return self._strategies.pop(detector_id)
        except KeyError:
            raise KeyError(f"Detector not registered: {detector_id}") from None

    def __contains__(self, detector_id: str) -> bool:
        return detector_id in self._strategies

    def __len__(self) -> int:
        return len(self._strategies)

    @property
    def strategies(self) -> Tuple[DetectionStrategy, ...]:
        return tuple(self._strategies.values())

    def build_detector(self, config: Optional[DetectorConfig] = None) -> SensitiveContentDetector:
        return SensitiveContentDetector(self.strategies, config)


def default_registry(config: Optional[DetectorConfig] = None) -> DetectorRegistry:
    """Registry with the built-in pattern rules and the entropy scan."""
    config = config or DetectorConfig()
    registry = DetectorRegistry(DEFAULT_PATTERN_STRATEGIES)
    registry.register(EntropyStrategy(
        threshold=config.entropy_threshold,
        printable_threshold=config.printable_entropy_threshold,
        min_length=config.entropy_min_length,
        window=config.entropy_window,
        step=config.entropy_window_step,
    ))
    return registry


# ===================================================================
# IGNORE LIST
# ===================================================================

def parse_ignore_manifest(text: str) -> FrozenSet[str]:
    """
    Parse .credignore contents into exact relative paths.

    Lines are split on '\\n' and taken verbatim; a single trailing '\\r'
    is dropped so CRLF files behave. Empty lines and '#' comments are
    skipped.
    """
    entries = set()
    for line in text.split("\n"):
        if line.endswith("\r"):
            line = line[:-1]
        if not line or line.startswith("#"):
            continue
        entries.add(line)
    return frozenset(entries)


async def resolve_ignore_set(repo_root: Path, repo_name: str = "") -> IgnoreSet:
    """
    Read the top-level .credignore of a repository.

    A missing manifest is not an error. An unreadable one is logged and
    treated as empty, and so is a symlinked one, which could point outside
    the clone. The manifest's own path is always excluded.
    """
    manifest = Path(repo_root) / CREDIGNORE_FILE
    if manifest.is_symlink():
        logger.warning(
            f"Ignoring symlinked {CREDIGNORE_FILE} in repo '{repo_name}'",
            extra={"repo": repo_name, "path": CREDIGNORE_FILE}
        )
        return IgnoreSet()
    if not manifest.is_file():
        return IgnoreSet()

    try:
        async with aiofiles.open(manifest, 'rb') as f:
            data = await f.read()
        text = data.decode("utf-8-sig")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(
            f"Could not read {CREDIGNORE_FILE} in repo '{repo_name}': {e}",
            extra={"repo": repo_name, "path": CREDIGNORE_FILE}
        )
        return IgnoreSet()

    paths = parse_ignore_manifest(text)
    logger.info(f"Found {CREDIGNORE_FILE} file in repo '{repo_name}' ({len(paths)} entries)")
    return IgnoreSet(paths=paths)


# ===================================================================
# REPOSITORY SCANNING
# ===================================================================

def walk_repository(repo_root: Path) -> List[Tuple[Path, str]]:
    """
    Collect regular files under ``repo_root`` in a stable order.

    Directories and file names are visited sorted. Symlinks are neither
    followed nor scanned. Unreadable subdirectories are logged and
    skipped; an unreadable root raises OSError.

    Returns:
        List of (absolute path, POSIX relative path)
    """
    root_str = os.path.normpath(str(repo_root))

    def _on_error(error: OSError):
        if error.filename and os.path.normpath(str(error.filename)) == root_str:
            raise error
        logger.warning(f"Cannot access {error.filename}: {error}")

    files = []
    for root, dirs, filenames in os.walk(repo_root, onerror=_on_error):
        dirs.sort()
        for filename in sorted(filenames):
            file_path = Path(root) / filename
            if file_path.is_symlink() or not file_path.is_file():
                continue
            files.append((file_path, file_path.relative_to(repo_root).as_posix()))
    return files


class RepositoryScanner:
    """Walks one working tree and runs the detector on every eligible file."""

    def __init__(self, detector: SensitiveContentDetector, config: Optional[CrawlConfig] = None):
        self.detector = detector
        self.config = config or CrawlConfig()

    async def scan(self, repo_root: Path, repo_name: str) -> RepositoryReport:
        """
        Scan a materialized repository.

        Args:
            repo_root: Working tree root
            repo_name: Repository name for reporting

        Returns:
            RepositoryReport, possibly without findings

        Raises:
            ScanError: the root is missing or cannot be walked
        """
        repo_root = Path(repo_root)
        if not repo_root.is_dir():
            raise ScanError(f"Repository root is not a directory: {repo_root}")

        ignore_set = await resolve_ignore_set(repo_root, repo_name)

        loop = asyncio.get_running_loop()
        try:
            files = await loop.run_in_executor(None, walk_repository, repo_root)
        except OSError as e:
            raise ScanError(f"Failed to walk {repo_root}: {e}") from e

        targets = []
        for file_path, relative_path in files:
            if relative_path in ignore_set:
                logger.debug(f"Ignoring {relative_path} in {repo_name}")
                continue
            targets.append((file_path, relative_path))

        logger.info(f"Scanning {len(targets)} files in {repo_name}")

        semaphore = asyncio.Semaphore(self.config.max_concurrent_files)
        results = await asyncio.gather(*(
            self._scan_file_with_semaphore(file_path, relative_path, repo_name, semaphore)
            for file_path, relative_path in targets
        ))

        report = RepositoryReport(name=repo_name)
        for file_findings in results:
            report.findings.extend(file_findings)
        return report

    async def _scan_file_with_semaphore(
        self,
        file_path: Path,
        relative_path: str,
        repo_name: str,
        semaphore: asyncio.Semaphore
    ) -> List[Finding]:
        """Scan file with semaphore control."""
        async with semaphore:
            return await self.scan_file(file_path, relative_path, repo_name)

    async def scan_file(self, file_path: Path, relative_path: str, repo_name: str) -> List[Finding]:
        """Scan one file. Read or detector errors yield no findings."""
        if self.config.skip_binary_extensions and file_path.suffix.lower() in BINARY_FILE_EXTENSIONS:
            logger.debug(f"Skipping binary file (extension): {relative_path}")
            return []

        try:
            file_size = file_path.stat().st_size
            if file_size > self.detector.config.max_file_size_bytes:
                logger.debug(f"Skipping large file: {relative_path} ({file_size} bytes)")
                return []

            async with aiofiles.open(file_path, 'rb') as f:
                content = await f.read()
        except OSError as e:
            logger.error(
                f"Failed to read {relative_path} in {repo_name}: {e}",
                extra={"repo": repo_name, "path": relative_path}
            )
            return []

        loop = asyncio.get_running_loop()
        try:
            detections = await loop.run_in_executor(None, self.detector.detect, content)
        except Exception as e:
            logger.error(
                f"Detector failed on {relative_path} in {repo_name}: {e}",
                extra={"repo": repo_name, "path": relative_path}
            )
            return []

        return group_findings(relative_path, detections)


# ===================================================================
# REPOSITORY MATERIALIZATION
# ===================================================================

Cloner = Callable[[str, Path], Awaitable[None]]


def remove_tree(path: Path) -> None:
    """Remove a directory tree, logging instead of raising."""
    for attempt in range(2):
        try:
            shutil.rmtree(path)
            return
        except FileNotFoundError:
            return
        except OSError as e:
            if attempt == 1:
                logger.warning(f"Failed to remove {path}: {e}")


def _safe_dir_name(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]", "_", name)[:64] or "repo"


def _kill_process(proc: asyncio.subprocess.Process) -> None:
    try:
        proc.kill()
    except ProcessLookupError:
        pass


class GitCloner:
    """Shallow-clones a repository with the ``git`` command line client."""

    def __init__(
        self,
        depth: int = CLONE_DEPTH,
        timeout_seconds: float = CLONE_TIMEOUT_SECONDS,
        retries: int = CLONE_RETRY_ATTEMPTS,
        retry_delay_seconds: float = CLONE_RETRY_DELAY_SECONDS
    ):
        self.depth = depth
        self.timeout_seconds = timeout_seconds
        self.retries = retries
        self.retry_delay_seconds = retry_delay_seconds

    async def __call__(self, clone_url: str, destination: Path) -> None:
        """
        Clone ``clone_url`` into ``destination`` with timeout and retries.

        Raises:
            MaterializationError: git is unavailable or every attempt failed
        """
        env = dict(os.environ, GIT_TERMINAL_PROMPT="0")
        last_error = "unknown error"

        for attempt in range(self.retries):
            if destination.exists():
                remove_tree(destination)

            logger.info(f"Cloning {clone_url} (attempt {attempt + 1}/{self.retries})")
            try:
                proc = await asyncio.create_subprocess_exec(
                    "git", "clone",
                    "--depth", str(self.depth),
                    "--single-branch",
                    "--no-tags",
                    "--quiet",
                    "--", clone_url, str(destination),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    env=env
                )
            except OSError as e:
                raise MaterializationError(f"Cannot run git: {e}") from e

            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                _kill_process(proc)
                await proc.wait()
                last_error = f"timeout after {self.timeout_seconds}s"
            except asyncio.CancelledError:
                _kill_process(proc)
                await asyncio.shield(proc.wait())
                raise
            else:
                if proc.returncode == 0:
                    return
                last_error = stderr.decode('utf-8', errors='ignore').strip()[:200] or f"exit code {proc.returncode}"

            logger.warning(f"Clone failed for {clone_url}: {last_error}")
            if attempt < self.retries - 1:
                await asyncio.sleep(self.retry_delay_seconds * (attempt + 1))

        raise MaterializationError(f"git clone failed after {self.retries} attempts: {last_error}")


@asynccontextmanager
async def materialize(clone_url: str, workspace: Path, name: str, cloner: Cloner) -> AsyncIterator[Path]:
    """
    Clone a repository into a fresh directory under ``workspace``.

    The ``.git`` directory is removed before the working tree is yielded.
    The whole directory is removed when the block exits, whether it exits
    normally, with an error, or through cancellation.

    Raises:
        MaterializationError: the clone failed or history could not be removed
    """
    try:
        scratch = Path(tempfile.mkdtemp(prefix=f"{_safe_dir_name(name)}_", dir=workspace))
    except OSError as e:
        raise MaterializationError(f"Cannot create working directory for {name}: {e}") from e

    try:
        repo_dir = scratch / "tree"
        try:
            await cloner(clone_url, repo_dir)
        except MaterializationError:
            raise
        except Exception as e:
            raise MaterializationError(f"Clone of {clone_url} failed: {e}") from e

        if not repo_dir.is_dir():
            raise MaterializationError(f"Clone of {clone_url} produced no working tree")

        # Only the working tree is scanned, never history.
        git_dir = repo_dir / ".git"
        try:
            if git_dir.is_symlink() or git_dir.is_file():
                git_dir.unlink()
            elif git_dir.is_dir():
                shutil.rmtree(git_dir)
        except OSError as e:
            raise MaterializationError(f"Failed to remove .git from {name}: {e}") from e

        yield repo_dir
    finally:
        remove_tree(scratch)


# ===================================================================
# REPOSITORY LISTING
# ===================================================================

def _rate_limit_wait(error: GithubException, attempt: int, backoff_base: float) -> float:
    """Seconds to wait before retrying a rate-limited call."""
    headers = getattr(error, "headers", None) or {}
    reset = headers.get("x-ratelimit-reset") or headers.get("X-RateLimit-Reset")
    if reset:
        try:
            return min(MAX_RATE_LIMIT_WAIT_SECONDS, max(1.0, float(reset) - time.time()))
        except ValueError:
            pass
    return backoff_base ** attempt


class GitHubRepositoryLister:
    """Lists an organization's public repositories through PyGithub."""

    def __init__(
        self,
        token: Optional[str] = None,
        max_retries: int = GITHUB_API_MAX_RETRIES,
        backoff_base: float = GITHUB_API_BACKOFF_BASE
    ):
        self.token = token
        self.max_retries = max_retries
        self.backoff_base = backoff_base

    def _fetch(self, organization: str) -> List[RepositoryRecord]:
        client = Github(auth=Auth.Token(self.token)) if self.token else Github()
        try:
            org = client.get_organization(organization)
            return [
                RepositoryRecord(name=repo.name, clone_url=repo.clone_url)
                for repo in org.get_repos(type="public")
            ]
        finally:
            client.close()

    async def list_public_repositories(self, organization: str) -> List[RepositoryRecord]:
        """
        Execute the listing call with exponential backoff on rate limit and
        transient errors.

        Raises:
            ListingError: the organization could not be listed
        """
        loop = asyncio.get_running_loop()

        for attempt in range(self.max_retries):
            last_attempt = attempt == self.max_retries - 1
            try:
                return await loop.run_in_executor(None, self._fetch, organization)

            except RateLimitExceededException as e:
                if last_attempt:
                    raise ListingError(f"Rate limit exceeded listing {organization}: {e}") from e
                wait_time = _rate_limit_wait(e, attempt, self.backoff_base)
                logger.warning(f"Rate limit exceeded. Waiting {wait_time:.0f}s before retrying")

            except GithubException as e:
                retryable = (e.status == 403 and 'rate limit' in str(e).lower()) or (e.status or 0) >= 500
                if not retryable or last_attempt:
                    raise ListingError(f"Failed to list repositories for {organization}: {e}") from e
                wait_time = self.backoff_base ** attempt
                logger.warning(f"GitHub API error (attempt {attempt + 1}/{self.max_retries}): {e}")

            except OSError as e:
                if last_attempt:
                    raise ListingError(f"Failed to list repositories for {organization}: {e}") from e
                wait_time = self.backoff_base ** attempt
                logger.warning(f"API call failed (attempt {attempt + 1}/{self.max_retries}): {e}")

            logger.info(f"Backing off for {wait_time:.1f}s")
            await asyncio.sleep(wait_time)

        raise ListingError(f"Failed to list repositories for {organization} after {self.max_retries} attempts")


# ===================================================================
# MAIN ORCHESTRATION
# ===================================================================

@dataclass
class RepositoryOutcome:
    name: str
    report: Optional[RepositoryReport] = None
    failure: Optional[RepositoryFailure] = None


class OrgCrawler:
    """
    Crawls every public repository of an organization.

    Collaborators:
        lister: object with async ``list_public_repositories(org)``
            returning RepositoryRecord entries
        cloner: async callable ``(clone_url, destination)``
        detector: SensitiveContentDetector used for every file
    """

    def __init__(
        self,
        lister,
        cloner: Optional[Cloner] = None,
        detector: Optional[SensitiveContentDetector] = None,
        config: Optional[CrawlConfig] = None
    ):
        self.config = config or CrawlConfig()
        self.lister = lister
        self.cloner = cloner or GitCloner(
            depth=self.config.clone_depth,
            timeout_seconds=self.config.clone_timeout_seconds,
            retries=self.config.clone_retries,
            retry_delay_seconds=self.config.clone_retry_delay_seconds
        )
        self.detector = detector or default_registry().build_detector()
        self.scanner = RepositoryScanner(self.detector, self.config)

    async def crawl(self, organization: str, cancel_event: Optional[asyncio.Event] = None) -> CrawlReport:
        """
        Run one full pass over the organization.

        Args:
            organization: GitHub organization name
            cancel_event: when set, in-flight repositories are cancelled
                (their clones are still removed) and the partial report is
                returned with ``complete`` set to False

        Returns:
            CrawlReport with one entry per repository that has findings

        Raises:
            ListingError: repositories could not be enumerated
            WorkspaceError: the scratch workspace could not be created
        """
        logger.info(f"Starting crawl of organization: {organization}")

        try:
            records = list(await self.lister.list_public_repositories(organization))
        except ListingError:
            raise
        except Exception as e:
            raise ListingError(f"Failed to list repositories for {organization}: {e}") from e

        report = CrawlReport(organization=organization, repositories_listed=len(records))

        targets = []
        for record in records:
            if not record.is_target:
                logger.debug(f"Skipping repository record without name or clone URL: {record}")
                continue
            targets.append(record)
        report.repositories_targeted = len(targets)
        logger.info(f"✓ Found {len(records)} repositories ({len(targets)} to scan) in {organization}")

        if not targets:
            logger.warning(f"No repositories to scan for {organization}")
            return report

        workspace = self._create_workspace(organization)
        logger.info(f"Clone directory: {workspace}")
        try:
            await self._run_workers(targets, workspace, report, cancel_event)
        finally:
            logger.info(f"Cleaning up clone directory: {workspace}")
            remove_tree(workspace)

        logger.info(
            f"Crawl complete. {len(report)} of {report.repositories_scanned} scanned repositories "
            f"have findings; {len(report.failures)} skipped",
            extra={"finding_count": report.total_findings}
        )
        return report

    def _create_workspace(self, organization: str) -> Path:
        try:
            return Path(tempfile.mkdtemp(
                prefix=f"seekret_{_safe_dir_name(organization)}_",
                dir=self.config.workspace_dir
            ))
        except OSError as e:
            raise WorkspaceError(f"Cannot create scratch workspace: {e}") from e

    async def _run_workers(
        self,
        targets: List[RepositoryRecord],
        workspace: Path,
        report: CrawlReport,
        cancel_event: Optional[asyncio.Event]
    ) -> None:
        semaphore = asyncio.Semaphore(self.config.max_concurrent_repos)
        pending = {
            asyncio.ensure_future(self._process_repository(record, workspace, semaphore))
            for record in targets
        }
        event_waiter = asyncio.ensure_future(cancel_event.wait()) if cancel_event is not None else None

        try:
            with tqdm(total=len(pending), desc="Crawling repos", unit="repo",
                      disable=not self.config.show_progress) as pbar:
                while pending:
                    waitables = pending | {event_waiter} if event_waiter is not None else pending
                    done, _ = await asyncio.wait(waitables, return_when=asyncio.FIRST_COMPLETED)

                    for task in done:
                        if task is event_waiter:
                            continue
                        pending.discard(task)
                        self._collect(report, task.result())
                        pbar.update(1)

                    if event_waiter is not None and event_waiter.done():
                        logger.warning(f"Cancellation requested; abandoning {len(pending)} in-flight repositories")
                        report.complete = False
                        break
        finally:
            for task in pending:
                task.cancel()
            if event_waiter is not None:
                event_waiter.cancel()
            # Wait for materialization scopes to finish their cleanup.
            await asyncio.gather(*pending, return_exceptions=True)

    @staticmethod
    def _collect(report: CrawlReport, outcome: RepositoryOutcome) -> None:
        if outcome.failure is not None:
            report.failures.append(outcome.failure)
            return
        report.repositories_scanned += 1
        report.add(outcome.report)

    async def _process_repository(
        self,
        record: RepositoryRecord,
        workspace: Path,
        semaphore: asyncio.Semaphore
    ) -> RepositoryOutcome:
        """Materialize and scan one repository. Never raises except on cancellation."""
        name = record.name
        async with semaphore:
            try:
                async with materialize(record.clone_url, workspace, name, self.cloner) as repo_dir:
                    repo_report = await asyncio.wait_for(
                        self.scanner.scan(repo_dir, name),
                        timeout=self.config.scan_timeout_seconds
                    )
            except MaterializationError as e:
                logger.error(f"✗ Failed to materialize {name}: {e}", extra={"repo": name})
                return RepositoryOutcome(name, failure=RepositoryFailure(name, "materialize", str(e)))
            except ScanError as e:
                logger.error(f"✗ Failed to scan {name}: {e}", extra={"repo": name})
                return RepositoryOutcome(name, failure=RepositoryFailure(name, "scan", str(e)))
            except asyncio.TimeoutError:
                logger.error(f"✗ Scan timeout for {name}", extra={"repo": name})
                return RepositoryOutcome(name, failure=RepositoryFailure(
                    name, "scan", f"timed out after {self.config.scan_timeout_seconds}s"))
            except Exception as e:
                logger.error(f"✗ Unexpected error processing {name}: {e}", extra={"repo": name}, exc_info=True)
                return RepositoryOutcome(name, failure=RepositoryFailure(name, "scan", str(e)))

        logger.info(
            f"✓ Scanned {name}: {len(repo_report.findings)} finding(s)",
            extra={"repo": name, "finding_count": len(repo_report.findings)}
        )
        return RepositoryOutcome(name, report=repo_report)


# ===================================================================
# REPORT GENERATION
# ===================================================================

def crawl_report_to_dict(report: CrawlReport) -> Dict[str, Any]:
    """Serialize a CrawlReport into the JSON report structure."""
    by_detector = Counter(
        finding.detector_id for repo in report for finding in repo.findings
    )
    return {
        "scan_metadata": {
            "timestamp": datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z'),
            "organization": report.organization,
            "scanner_version": SCANNER_VERSION,
            "complete": report.complete,
            "repositories_listed": report.repositories_listed,
            "repositories_targeted": report.repositories_targeted,
            "repositories_scanned": report.repositories_scanned,
        },
        "summary": {
            "repositories_with_findings": len(report),
            "total_findings": report.total_findings,
            "by_detector": dict(by_detector),
            "failures": [
                {"repo": f.name, "stage": f.stage, "reason": f.reason}
                for f in report.failures
            ],
        },
        "repositories": [
            {"name": repo.name, "findings": [f.to_dict() for f in repo.findings]}
            for repo in report
        ],
    }


def write_json_report(report: CrawlReport, output_path: Path) -> bool:
    """Write the JSON report. Returns False (and logs) if the file can't be written."""
    try:
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(crawl_report_to_dict(report), f, indent=2)
    except OSError as e:
        logger.error(f"Failed to write JSON report: {e}")
        return False

    logger.info(f"JSON report written to {output_path}")
    return True


def log_report_summary(report: CrawlReport) -> None:
    """Print the crawl result to the console through the logger."""
    logger.info("=" * 70)
    logger.info(f"Organization: {report.organization}")
    logger.info(
        f"Repositories: {report.repositories_listed} listed, {report.repositories_targeted} targeted, "
        f"{report.repositories_scanned} scanned, {len(report.failures)} skipped"
    )
    for repo in report:
        logger.warning(f"Sensitive data in '{repo.name}': {len(repo.findings)} finding(s)")
        for finding in repo.findings:
            spans = ", ".join(f"{s.start}-{s.end}" for s in finding.spans)
            logger.warning(f"  {finding.path} [{finding.detector_id}] bytes {spans}")
    for failure in report.failures:
        logger.warning(f"Skipped '{failure.name}' during {failure.stage}: {failure.reason}")
    if not report.complete:
        logger.warning("Crawl was cancelled; report is partial")
    logger.info("=" * 70)


# ===================================================================
# COMMAND LINE INTERFACE
# ===================================================================

def parse_arguments(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog='skrt',
        description='Seekret is a sensitive data crawler for GitHub repositories',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
ENVIRONMENT VARIABLES:
  GITHUB_TOKEN          OAuth2 access token (same as --oauth-token)
  TARGET_ORG            Organization name (same as --org)
  MAX_CONCURRENT_REPOS  Repositories processed in parallel (default: 5)
  MAX_CONCURRENT_FILES  Files scanned in parallel per repository (default: 50)
  CLONE_DEPTH           Git shallow clone depth (default: 1)
  MAX_FILE_SIZE_MB      Skip files larger than this in MB (default: 10)

EXIT CODES:
  0   Success (some repositories or files may have been skipped)
  1   Error (missing organization, listing failure, etc.)
  130 Interrupted by user (Ctrl+C); a partial report is written
        '''
    )

    parser.add_argument('--org', default=TARGET_ORG, help='GitHub organization name.')
    parser.add_argument(
        '--oauth-token',
        default=GITHUB_TOKEN,
        help='OAuth2 access token. Required for increased rate limits.'
    )
    parser.add_argument(
        '--max-concurrent-repos',
        type=int,
        default=MAX_CONCURRENT_REPOS,
        help=f'Repositories processed in parallel (default: {MAX_CONCURRENT_REPOS})'
    )
    parser.add_argument(
        '--max-concurrent-files',
        type=int,
        default=MAX_CONCURRENT_FILES,
        help=f'Files scanned in parallel per repository (default: {MAX_CONCURRENT_FILES})'
    )
    parser.add_argument(
        '--entropy-threshold',
        type=float,
        default=ENTROPY_THRESHOLD,
        help=f'Fraction of the maximum entropy a token must exceed to be flagged (default: {ENTROPY_THRESHOLD})'
    )
    parser.add_argument(
        '--custom-patterns',
        type=str,
        metavar='FILE',
        default=CUSTOM_PATTERNS_FILE,
        help='Path to custom regex patterns JSON file'
    )
    parser.add_argument(
        '--workspace-dir',
        type=str,
        metavar='DIR',
        default=WORKSPACE_DIR,
        help='Directory in which scratch clones are created (default: system temp)'
    )
    parser.add_argument(
        '--output',
        type=str,
        metavar='FILE',
        default=OUTPUT_FILE,
        help=f'JSON report path (default: {OUTPUT_FILE})'
    )
    parser.add_argument(
        '--log-format',
        type=str,
        choices=['text', 'json'],
        default=LOG_FORMAT,
        help=f'Logging format (default: {LOG_FORMAT})'
    )
    parser.add_argument('--no-progress', action='store_true', help='Disable progress bars')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable verbose debug logging')
    parser.add_argument('--version', action='version', version=f'%(prog)s {SCANNER_VERSION}')

    return parser.parse_args(argv)


def build_detector(config: DetectorConfig, custom_patterns_file: str = "") -> SensitiveContentDetector:
    """Default registry plus any custom patterns, frozen into a detector."""
    registry = default_registry(config)
    if custom_patterns_file:
        for strategy in load_custom_patterns(custom_patterns_file):
            try:
                registry.register(strategy)
            except ValueError as e:
                logger.warning(f"Skipping custom pattern: {e}")
    return registry.build_detector(config)


async def run_crawl(crawler: OrgCrawler, organization: str) -> CrawlReport:
    """Run a crawl that SIGINT/SIGTERM cancel gracefully."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, cancel_event.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError, ValueError):
            # Windows event loops and non-main threads have no signal handlers
            pass

    try:
        return await crawler.crawl(organization, cancel_event=cancel_event)
    finally:
        for sig in installed:
            loop.remove_signal_handler(sig)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point with validation and error handling."""
    args = parse_arguments(argv)

    setup_logging(args.log_format)
    if args.verbose:
        logger.setLevel(logging.DEBUG)

    if not args.org:
        logger.error("=" * 70)
        logger.error("ERROR: no organization given")
        logger.error("=" * 70)
        logger.error("Pass --org <name> or set TARGET_ORG")
        logger.error("For help: skrt --help")
        return 1

    try:
        detector_config = DetectorConfig(entropy_threshold=args.entropy_threshold)
        crawl_config = CrawlConfig(
            max_concurrent_repos=args.max_concurrent_repos,
            max_concurrent_files=args.max_concurrent_files,
            workspace_dir=Path(args.workspace_dir) if args.workspace_dir else None,
            show_progress=not args.no_progress,
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    detector = build_detector(detector_config, args.custom_patterns)
    crawler = OrgCrawler(
        GitHubRepositoryLister(args.oauth_token),
        detector=detector,
        config=crawl_config,
    )

    logger.info("=" * 70)
    logger.info("SEEKRET SENSITIVE DATA CRAWLER")
    logger.info("=" * 70)
    logger.info(f"Organization: {args.org}")
    logger.info(f"Authenticated: {bool(args.oauth_token)}")
    logger.info(f"Max concurrent repos: {crawl_config.max_concurrent_repos}")
    logger.info(f"Detectors: {', '.join(s.detector_id for s in detector.strategies)}")
    logger.info("=" * 70)

    try:
        report = asyncio.run(run_crawl(crawler, args.org))
    except SeekretError as e:
        logger.error(f"Fatal: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Scan interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        return 1

    log_report_summary(report)
    write_json_report(report, Path(args.output))

    if not report.complete:
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())

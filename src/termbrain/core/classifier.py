"""
Rule-based command classification.

``classify`` walks an ordered list of (predicate, label) rules and returns the
first label whose predicate matches. Order matters: specific rules sit above
generic ones, so ``npm test`` is testing even though it starts with a
package-manager word. Package-manager words win over build words, so
``npm run build`` and ``go build`` are package management.
"""

import re
from typing import Callable, List, Tuple

from ..models import SENSITIVE_PLACEHOLDER, SemanticType

Predicate = Callable[[str], bool]


def _prefix(*words: str) -> Predicate:
    """Match when the command starts with one of ``words`` as a whole token."""
    pattern = re.compile(r"^(?:%s)(?=\s|$)" % "|".join(re.escape(w) for w in words))
    return lambda text: bool(pattern.match(text))


def _regex(expression: str) -> Predicate:
    pattern = re.compile(expression)
    return lambda text: bool(pattern.search(text))


def _all(*predicates: Predicate) -> Predicate:
    return lambda text: all(p(text) for p in predicates)


def _any(*predicates: Predicate) -> Predicate:
    return lambda text: any(p(text) for p in predicates)


CLASSIFICATION_RULES: List[Tuple[Predicate, SemanticType]] = [
    (_prefix("git", "svn", "hg", "mercurial"), SemanticType.VERSION_CONTROL),
    (
        _any(
            _regex(r"^(?:npm|yarn|pnpm|bun)\s+(?:run\s+)?test\b"),
            _regex(r"^(?:cargo|go)\s+test\b"),
            _regex(r"^python3?\s+-m\s+(?:pytest|unittest)\b"),
            _prefix("pytest", "unittest", "phpunit", "jest", "mocha", "tox", "rspec"),
            _regex(r"^\./(?:run_)?tests?\.sh\b"),
            _regex(r"\.(?:test|spec)\.[jt]s\b"),
        ),
        SemanticType.TESTING,
    ),
    (
        _prefix(
            "npm", "yarn", "pnpm", "bun", "pip", "pip3", "pipx", "poetry", "gem",
            "cargo", "go", "apt", "apt-get", "yum", "dnf", "brew", "snap", "composer",
        ),
        SemanticType.PACKAGE_MANAGEMENT,
    ),
    (
        _prefix("make", "cmake", "gcc", "g++", "clang", "rustc", "mvn", "gradle", "ninja"),
        SemanticType.BUILDING,
    ),
    (_prefix("docker", "docker-compose", "kubectl", "podman", "containerd", "helm"), SemanticType.CONTAINER),
    (_prefix("cp", "mv", "rm", "mkdir", "rmdir", "touch", "chmod", "chown", "ln"), SemanticType.FILE_OPERATION),
    (_prefix("cd", "ls", "pwd", "find", "locate", "tree", "pushd", "popd"), SemanticType.NAVIGATION),
    (_prefix("ps", "top", "htop", "kill", "killall", "pkill", "jobs", "fg", "bg"), SemanticType.PROCESS_MANAGEMENT),
    (_prefix("curl", "wget", "ping", "nc", "netcat", "ssh", "scp", "rsync", "telnet"), SemanticType.NETWORK),
    (_prefix("sudo", "su", "systemctl", "service", "journalctl"), SemanticType.SYSTEM_ADMIN),
    (_prefix("mysql", "psql", "mongo", "mongosh", "redis-cli", "sqlite3"), SemanticType.DATABASE),
    (
        _all(_regex(r"\b(?:tail|head|less|more|watch|grep|awk|sed)\b"), _regex(r"log")),
        SemanticType.MONITORING,
    ),
    (_prefix("grep", "egrep", "fgrep", "ag", "rg", "ack"), SemanticType.SEARCHING),
]


def classify(text: str) -> SemanticType:
    """Map command text to its semantic type; unmatched text is ``general``."""
    stripped = text.strip()
    for predicate, label in CLASSIFICATION_RULES:
        if predicate(stripped):
            return label
    return SemanticType.GENERAL


_SENSITIVE_PATTERNS = [
    re.compile(r"password|passwd|secret|token|credential", re.IGNORECASE),
    re.compile(r"api[_-]?key|access[_-]?key|private[_-]?key", re.IGNORECASE),
    re.compile(r"\b(?:export|set)\s+\w*(?:_KEY|_TOKEN|_SECRET|_PASSWORD|_PASSWD)\s*=", re.IGNORECASE),
    re.compile(r"authorization\s*:|\bbearer\s+\S", re.IGNORECASE),
    re.compile(r"https?://[^\s/@]+@"),
]


def is_sensitive(text: str) -> bool:
    """True when the command carries credential-like material."""
    return any(pattern.search(text) for pattern in _SENSITIVE_PATTERNS)


def redact(text: str) -> str:
    """Text safe to store: the placeholder for sensitive commands."""
    return SENSITIVE_PLACEHOLDER if is_sensitive(text) else text


_SINGLE_PIPE = re.compile(r"(?<!\|)\|(?!\|)")
_REDIRECTION = re.compile(r"[<>]")
_SUBSHELL = re.compile(r"[$()`]")
_FAN_OUT = re.compile(r"\bxargs\b|\bparallel\b|\bfind\b.*\s-exec(?:dir)?\b")

MAX_COMPLEXITY = 5


def complexity(text: str) -> int:
    """Score 1..5: +1 per pipe, +1 for redirection, +1 for heavy substitution, +1 for fan-out."""
    score = 1 + len(_SINGLE_PIPE.findall(text))
    if _REDIRECTION.search(text):
        score += 1
    if len(_SUBSHELL.findall(text)) > 2:
        score += 1
    if _FAN_OUT.search(text):
        score += 1
    return min(score, MAX_COMPLEXITY)

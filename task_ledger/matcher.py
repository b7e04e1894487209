"""
Capability Matcher.

A pure function from (task descriptor, worker table) to a ranked list of
worker ids. Ranking is deterministic:

1. Each worker scores the best (precedence, kind_rank) over its matching
   rules; kind_rank is 1 for path rules and 0 for keyword rules, so a path
   rule outranks a keyword rule of the same precedence class.
2. Workers are sorted by score, highest first; ties keep registration order.
3. With no match at all the result is [default_worker], or [] when the
   table has no default.
"""

import re
from fnmatch import fnmatchcase
from pathlib import PurePosixPath
from typing import List, NamedTuple, Optional, Tuple

from task_ledger.models import CapabilityRule, RuleKind, TaskDescriptor, WorkerTable


KIND_RANK = {
    RuleKind.PATH: 1,
    RuleKind.KEYWORD: 0,
}


class RuleMatch(NamedTuple):
    """A rule that matched, and the pattern that made it match."""
    rule: CapabilityRule
    pattern: str

    @property
    def score(self) -> Tuple[int, int]:
        return (self.rule.precedence, KIND_RANK[self.rule.kind])


class WorkerMatch(NamedTuple):
    """Match details for one worker."""
    worker_id: str
    position: int
    matches: List[RuleMatch]

    @property
    def score(self) -> Optional[Tuple[int, int]]:
        if not self.matches:
            return None
        return max(m.score for m in self.matches)


def _normalize_path(path: str) -> str:
    if not path:
        return ""
    path = path.strip().replace("\\", "/")
    while path.startswith("./"):
        path = path[2:]
    return path


def _path_matches(pattern: str, path: str) -> bool:
    """Glob against the full path, and against the basename for slash-free patterns."""
    if not path:
        return False
    pattern = pattern.replace("\\", "/")
    if fnmatchcase(path.lower(), pattern.lower()):
        return True
    if "/" not in pattern:
        return fnmatchcase(PurePosixPath(path).name.lower(), pattern.lower())
    return False


def _keyword_matches(keyword: str, text: str) -> bool:
    """Case-insensitive whole-word (or whole-phrase) match."""
    if not text:
        return False
    expression = r"(?<!\w)" + re.escape(keyword.lower()) + r"(?!\w)"
    return re.search(expression, text.lower()) is not None


def match_rule(rule: CapabilityRule, descriptor: TaskDescriptor) -> Optional[RuleMatch]:
    """
    Evaluate one rule; patterns are tried in order and the first hit wins.

    Returns:
        RuleMatch or None
    """
    if rule.kind == RuleKind.PATH:
        path = _normalize_path(descriptor.file)
        for pattern in rule.patterns:
            if _path_matches(pattern, path):
                return RuleMatch(rule, pattern)
    else:
        text = f"{descriptor.title}\n{descriptor.prompt}"
        for pattern in rule.patterns:
            if _keyword_matches(pattern, text):
                return RuleMatch(rule, pattern)
    return None


def explain(descriptor: TaskDescriptor, table: WorkerTable) -> List[WorkerMatch]:
    """Per-worker match details in registration order (diagnostics)."""
    details = []
    for position, worker in enumerate(table.workers):
        matches = []
        for rule in worker.rules:
            hit = match_rule(rule, descriptor)
            if hit is not None:
                matches.append(hit)
        details.append(WorkerMatch(worker.id, position, matches))
    return details


def match(descriptor: TaskDescriptor, table: WorkerTable) -> List[str]:
    """
    Rank eligible workers for a task.

    Args:
        descriptor: Title, target path and prompt of the task
        table: Registered workers with their capability rules

    Returns:
        Worker ids, best first. Empty when nothing matches and the table
        has no default worker.
    """
    eligible = [d for d in explain(descriptor, table) if d.matches]

    if not eligible:
        return [table.default_worker] if table.default_worker else []

    # Stable sort keeps registration order among equal scores
    eligible.sort(key=lambda d: d.score, reverse=True)
    return [d.worker_id for d in eligible]

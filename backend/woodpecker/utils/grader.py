"""Grading of typed move sequences against a puzzle solution.

Two graders are exposed because both are reachable from the API:

- `grade_line` (flat mode) walks the typed moves ply by ply against the
  top-level solution lines and reports depth, ticks and the first mistake.
- `grade_first_move_or_full` (legacy branching mode) follows the solution
  forest, taking the first matching sibling at each depth.

Both compare moves with `normalize_san` and report the solution-side SAN.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, NamedTuple, Optional, Sequence, Tuple

from .san import normalize_san
from .solution import SolutionNode


@dataclass
class GradeResult:
    correct: bool = False
    score: int = 0
    matched_line: List[str] = field(default_factory=list)
    ticks_matched: List[int] = field(default_factory=list)
    depth_matched: int = 0
    earliest_mistake: Optional[int] = None
    best_line: List[str] = field(default_factory=list)

    def to_payload(self, required_ticks: Iterable[str] = ()) -> dict:
        """Response body for the grade-line endpoint."""
        return {
            "correct": self.correct,
            "score": self.score,
            "matchedLine": list(self.matched_line),
            "ticksMatched": list(self.ticks_matched),
            "depthMatched": self.depth_matched,
            "earliestMistake": self.earliest_mistake,
            "bestLine": list(self.best_line),
            "requiredTicks": list(required_ticks),
        }


def grade_line(
    solution_lines: Sequence[SolutionNode],
    typed: Sequence[str],
) -> GradeResult:
    """Grade `typed` against a flat solution line.

    Walks both sequences in lock-step and stops at the first mismatch or
    when the typed line runs past the solution; that index becomes
    `earliest_mistake`. A correct first move scores one point and every
    matched tick (including one on the first move) adds one more.

    Only the node's own `is_tick` flag marks a tick. Another ply with the
    same SAN, such as a recapture, is not credited.
    """
    result = GradeResult()
    if not typed:
        return result

    for i, move in enumerate(typed):
        if i >= len(solution_lines):
            result.earliest_mistake = i
            break
        node = solution_lines[i]
        expected = normalize_san(node.move)
        if not node.move or normalize_san(move) != expected:
            result.earliest_mistake = i
            break
        result.best_line.append(node.move)
        result.depth_matched = i + 1
        if i == 0:
            result.correct = True
        if node.is_tick:
            result.ticks_matched.append(i)

    result.matched_line = list(result.best_line)
    if result.correct:
        result.score = 1 + len(result.ticks_matched)
    return result


class LegacyGrade(NamedTuple):
    correct: bool
    score: int
    matched_line: List[str]

    def to_payload(self) -> dict:
        return {"correct": self.correct, "score": self.score, "matchedLine": list(self.matched_line)}


class _Branch(NamedTuple):
    path: Tuple[str, ...]
    ticks: int


_NO_MATCH = _Branch(path=(), ticks=0)


def _descend(nodes: Sequence[SolutionNode], typed: Sequence[str], depth: int) -> _Branch:
    """Follow the first matching sibling at `depth`; never backtracks."""
    if depth >= len(typed):
        return _NO_MATCH
    for node in nodes:
        if not node.move or normalize_san(node.move) != typed[depth]:
            continue
        rest = _descend(node.children, typed, depth + 1)
        return _Branch(path=(node.move,) + rest.path, ticks=int(node.is_tick) + rest.ticks)
    return _NO_MATCH


def _match_alternative(alternatives: Sequence[Sequence[str]], typed: Sequence[str]) -> Optional[List[str]]:
    for alt in alternatives:
        if len(typed) > len(alt):
            continue
        if [normalize_san(m) for m in alt[: len(typed)]] == list(typed):
            return list(alt[: len(typed)])
    return None


def grade_first_move_or_full(
    forest: Sequence[SolutionNode],
    typed: Sequence[str],
    alternatives: Sequence[Sequence[str]] = (),
) -> LegacyGrade:
    """Grade against a branching solution forest.

    The typed line is correct when its first move matches a root line. The
    score is the number of tick moves along the followed path, and the
    matched path is returned even if a later typed move diverges. When no
    root matches, `alternatives` (accepted alternate full lines) are tried
    as plain prefixes and score no tick points.
    """
    if not typed:
        return LegacyGrade(False, 0, [])
    wanted = [normalize_san(m) for m in typed]
    branch = _descend(forest, wanted, 0)
    if branch.path:
        return LegacyGrade(True, branch.ticks, list(branch.path))
    alt = _match_alternative(alternatives, wanted)
    if alt is not None:
        return LegacyGrade(True, 0, alt)
    return LegacyGrade(False, 0, [])

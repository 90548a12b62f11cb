"""Solution tree model for puzzles.

A puzzle's accepted solution is stored as JSON::

    {"lines": [{"san": "Qxf7+", "isTick": true, "children": [...]}, ...],
     "acceptedAlternatives": [["Qxf7+", "Kxf7"], ...]}

and loaded into immutable `SolutionNode` forests. The same top-level
`lines` list is read two ways: as a forest of alternative first moves by
the legacy branching grader, and as one node per ply by the flat grader.

Loading validates structure (lists where lists are expected, objects for
nodes) and raises `SolutionParseError` otherwise. A node without a usable
move string is kept with ``move == ""`` and simply never matches.
"""

import json
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Tuple, Union

from ..errors import SolutionParseError


@dataclass(frozen=True)
class SolutionNode:
    move: str
    is_tick: bool = False
    children: Tuple["SolutionNode", ...] = ()

    @property
    def reachable(self) -> bool:
        return bool(self.move)


@dataclass(frozen=True)
class Solution:
    lines: Tuple[SolutionNode, ...] = ()
    accepted_alternatives: Tuple[Tuple[str, ...], ...] = ()

    @property
    def solved_depth(self) -> int:
        """Depth a typed line must reach for the puzzle to count as solved."""
        return max(1, len(self.lines))

    def tick_moves(self) -> Tuple[str, ...]:
        """SANs of the flat line flagged as ticks, in ply order."""
        return tuple(n.move for n in self.lines if n.is_tick and n.move)


RawSolution = Union[str, bytes, dict, list, None]


def _decode(raw: RawSolution, puzzle_id: Optional[str]) -> Any:
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        if not raw.strip():
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise SolutionParseError(f"invalid solution JSON: {e.msg}", puzzle_id) from e
    return raw


def _parse_node(item: Any, puzzle_id: Optional[str]) -> SolutionNode:
    if not isinstance(item, dict):
        raise SolutionParseError("solution node must be an object", puzzle_id)
    move = item.get("san", item.get("move"))
    if not isinstance(move, str):
        move = ""
    children = item.get("children") or []
    if not isinstance(children, list):
        raise SolutionParseError("solution node children must be a list", puzzle_id)
    return SolutionNode(
        move=move.strip(),
        is_tick=bool(item.get("isTick", False)),
        children=tuple(_parse_node(c, puzzle_id) for c in children),
    )


def _parse_alternatives(raw: Any, puzzle_id: Optional[str]) -> Tuple[Tuple[str, ...], ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise SolutionParseError("acceptedAlternatives must be a list of move lists", puzzle_id)
    out = []
    for alt in raw:
        if not isinstance(alt, list) or not all(isinstance(m, str) for m in alt):
            raise SolutionParseError("each accepted alternative must be a list of SAN strings", puzzle_id)
        out.append(tuple(alt))
    return tuple(out)


def parse_solution(raw: RawSolution, puzzle_id: Optional[str] = None) -> Solution:
    """Load a stored solution into a `Solution`.

    Accepts the JSON text as stored, an already decoded object, or a bare
    list of line nodes. Empty input yields an empty solution.
    """
    data = _decode(raw, puzzle_id)
    if data is None:
        return Solution()
    if isinstance(data, list):
        data = {"lines": data}
    if not isinstance(data, dict):
        raise SolutionParseError("solution must be an object", puzzle_id)
    lines = data.get("lines") or []
    if not isinstance(lines, list):
        raise SolutionParseError("solution lines must be a list", puzzle_id)
    return Solution(
        lines=tuple(_parse_node(item, puzzle_id) for item in lines),
        accepted_alternatives=_parse_alternatives(data.get("acceptedAlternatives"), puzzle_id),
    )


def parse_ticks(raw: Union[str, bytes, list, None], puzzle_id: Optional[str] = None) -> Tuple[str, ...]:
    """Load the stored list of tick SANs."""
    data = _decode(raw, puzzle_id)
    if data is None:
        return ()
    if not isinstance(data, list) or not all(isinstance(t, str) for t in data):
        raise SolutionParseError("ticks must be a list of SAN strings", puzzle_id)
    return tuple(data)


def _node_to_dict(node: SolutionNode) -> dict:
    out = {"san": node.move}
    if node.is_tick:
        out["isTick"] = True
    if node.children:
        out["children"] = [_node_to_dict(c) for c in node.children]
    return out


def dump_solution(solution: Solution) -> str:
    """Serialize a `Solution` back to the stored JSON shape."""
    data = {"lines": [_node_to_dict(n) for n in solution.lines]}
    if solution.accepted_alternatives:
        data["acceptedAlternatives"] = [list(a) for a in solution.accepted_alternatives]
    return json.dumps(data, ensure_ascii=True)


def flat_line(moves: Iterable[str], ticks: Iterable[int] = ()) -> Solution:
    """Build a flat single-line solution; `ticks` are the ply indexes to flag."""
    tick_set = set(ticks)
    return Solution(lines=tuple(SolutionNode(move=m, is_tick=i in tick_set) for i, m in enumerate(moves)))

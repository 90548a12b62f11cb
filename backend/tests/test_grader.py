from woodpecker.utils.grader import GradeResult, grade_first_move_or_full, grade_line
from woodpecker.utils.solution import SolutionNode, flat_line, parse_solution

LINE = flat_line(["Re8+", "Rxe8", "Rxe8#"], ticks=[2]).lines


def test_empty_typed_is_zero_result():
    assert grade_line(LINE, []) == GradeResult()
    r = grade_line(LINE, [])
    assert r.earliest_mistake is None
    assert r.to_payload()["earliestMistake"] is None


def test_full_line_scores_first_move_plus_ticks():
    r = grade_line(LINE, ["Re8+", "Rxe8", "Rxe8#"])
    assert r.correct
    assert r.depth_matched == 3
    assert r.ticks_matched == [2]
    assert r.score == 2
    assert r.best_line == ["Re8+", "Rxe8", "Rxe8#"]
    assert r.matched_line == r.best_line
    assert r.earliest_mistake is None


def test_echoes_solution_side_san():
    r = grade_line(LINE, ["re8", "RXE8", "rxe8"])
    assert r.best_line == ["Re8+", "Rxe8", "Rxe8#"]


def test_mistake_stops_walk():
    r = grade_line(LINE, ["Re8+", "Kh8", "Rxe8#"])
    assert r.correct
    assert r.depth_matched == 1
    assert r.earliest_mistake == 1
    assert r.score == 1
    assert r.best_line == ["Re8+"]


def test_wrong_first_move_scores_zero():
    r = grade_line(LINE, ["Qd8"])
    assert not r.correct
    assert r.score == 0
    assert r.earliest_mistake == 0
    assert r.depth_matched == 0


def test_typing_past_the_solution_is_a_mistake():
    r = grade_line(LINE, ["Re8+", "Rxe8", "Rxe8#", "Kh7"])
    assert r.depth_matched == 3
    assert r.earliest_mistake == 3
    assert r.score == 2


def test_ticks_at_first_and_last_ply():
    line = flat_line(["e4", "e5", "Nf3"], ticks=[0, 2]).lines
    r = grade_line(line, ["e4", "e5", "Nf3"])
    assert (r.correct, r.ticks_matched, r.score, r.depth_matched, r.earliest_mistake) == (True, [0, 2], 3, 3, None)
    r = grade_line(line, ["d4"])
    assert (r.correct, r.score, r.earliest_mistake, r.depth_matched) == (False, 0, 0, 0)


def test_tick_on_first_move_counts():
    line = flat_line(["e4", "d5"], ticks=[0]).lines
    r = grade_line(line, ["e4", "d5"])
    assert r.ticks_matched == [0]
    assert r.score == 2


def test_recapture_with_same_san_is_not_a_tick():
    line = flat_line(["Re8+", "Rxe8", "Rxe8#"], ticks=[2]).lines
    r = grade_line(line, ["Re8+", "Rxe8", "Rxe8#"])
    # "Rxe8" and "Rxe8#" normalize alike; only the flagged ply counts
    assert r.ticks_matched == [2]
    assert r.score == 2


def test_required_ticks_are_display_only():
    line = flat_line(["Re8+", "Rxe8", "Rxe8#"]).lines
    r = grade_line(line, ["Re8+", "Rxe8", "Rxe8#"])
    assert r.ticks_matched == []
    assert r.score == 1
    assert r.to_payload(["Rxe8#"])["requiredTicks"] == ["Rxe8#"]


def test_node_with_empty_move_never_matches():
    line = (SolutionNode("e4"), SolutionNode(""), SolutionNode("Nf3"))
    r = grade_line(line, ["e4", "", "Nf3"])
    assert r.depth_matched == 1
    assert r.earliest_mistake == 1


def test_grade_properties_hold_for_prefixes():
    typed = ["Re8+", "Rxe8", "Rxe8#"]
    for n in range(len(typed) + 1):
        r = grade_line(LINE, typed[:n])
        assert 0 <= r.depth_matched <= n
        assert len(r.best_line) == r.depth_matched
        assert r.correct == (r.depth_matched >= 1)
        assert r.score == (1 + len(r.ticks_matched) if r.correct else 0)
        assert all(i < r.depth_matched for i in r.ticks_matched)


def test_payload_keys():
    payload = grade_line(LINE, ["Re8+"]).to_payload(["Rxe8#"])
    assert payload == {
        "correct": True,
        "score": 1,
        "matchedLine": ["Re8+"],
        "ticksMatched": [],
        "depthMatched": 1,
        "earliestMistake": None,
        "bestLine": ["Re8+"],
        "requiredTicks": ["Rxe8#"],
    }


FOREST = parse_solution({
    "lines": [
        {"san": "Qxf7+", "isTick": True, "children": [
            {"san": "Kd8", "children": [{"san": "Qf8#", "isTick": True}]},
            {"san": "Ke7", "children": [{"san": "Qe6#", "isTick": True}]},
        ]},
        {"san": "Bxf7+", "children": [{"san": "Ke7"}]},
    ],
    "acceptedAlternatives": [["Qh5", "g6", "Qxe5+"]],
}).lines


def test_legacy_follows_first_matching_branch():
    r = grade_first_move_or_full(FOREST, ["Qxf7+", "Kd8", "Qf8#"])
    assert r.correct
    assert r.score == 2
    assert r.matched_line == ["Qxf7+", "Kd8", "Qf8#"]


def test_legacy_second_sibling_and_normalization():
    r = grade_first_move_or_full(FOREST, ["qxf7", "Ke7", "Qe6"])
    assert r == (True, 2, ["Qxf7+", "Ke7", "Qe6#"])


def test_legacy_returns_partial_path_on_divergence():
    r = grade_first_move_or_full(FOREST, ["Qxf7+", "Kd8", "Qe8"])
    assert r.correct
    assert r.matched_line == ["Qxf7+", "Kd8"]
    assert r.score == 1


def test_legacy_first_move_only():
    r = grade_first_move_or_full(FOREST, ["Bxf7+"])
    assert r == (True, 0, ["Bxf7+"])


def test_legacy_wrong_first_move_and_empty():
    assert grade_first_move_or_full(FOREST, ["Nf3"]) == (False, 0, [])
    assert grade_first_move_or_full(FOREST, []) == (False, 0, [])


def test_legacy_accepted_alternative_prefix():
    alts = [("Qh5", "g6", "Qxe5+")]
    r = grade_first_move_or_full(FOREST, ["Qh5", "g6"], alts)
    assert r.correct
    assert r.score == 0
    assert r.matched_line == ["Qh5", "g6"]
    assert grade_first_move_or_full(FOREST, ["Qh5", "Nf6"], alts).correct is False
    assert r.to_payload() == {"correct": True, "score": 0, "matchedLine": ["Qh5", "g6"]}

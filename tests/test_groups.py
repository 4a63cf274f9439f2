import threading

from models import GroupRequest, NotAdjacent, PreferredRows, SolveStatus
from solver.groups import GroupSearch
from solver.orchestrator import solve_groups


def _names(n):
    return [f"g{i:02d}" for i in range(n)]


def test_groups_are_balanced_and_cover_everyone():
    entities = _names(10)
    result = solve_groups(GroupRequest(entities=entities, num_groups=3, capacity=4, seed=6))
    assert result.status is SolveStatus.SUCCESS
    groups = result.plan.as_lists()
    assert len(groups) == 3
    assert sorted(n for g in groups for n in g) == sorted(entities)
    sizes = [len(g) for g in groups]
    assert max(sizes) - min(sizes) <= 1
    assert max(sizes) <= 4


def test_emptiest_group_is_tried_first():
    search = GroupSearch(["a", "b", "c", "d"], 3, 2)
    assert search.run() is SolveStatus.SUCCESS
    assert search.plan.groups == [["a", "d"], ["b"], ["c"]]
    assert search.steps == 4


def test_not_adjacent_pairs_land_in_different_groups():
    entities = _names(9)
    triangle = [("g00", "g01"), ("g01", "g02"), ("g00", "g02")]
    constraints = [NotAdjacent(a, b) for a, b in triangle] + [NotAdjacent("g03", "g04")]
    result = solve_groups(
        GroupRequest(entities=entities, num_groups=3, capacity=3, constraints=constraints, seed=12)
    )
    assert result.status is SolveStatus.SUCCESS
    plan = result.plan
    for a, b in triangle + [("g03", "g04")]:
        assert plan.group_of(a) != plan.group_of(b)


def test_backtracks_out_of_a_bad_balance_choice():
    # a and b take separate groups first, which leaves c with nowhere to go
    # unless the search backtracks.
    partners = {"c": {"a", "b"}, "a": {"c"}, "b": {"c"}}
    search = GroupSearch(["a", "b", "c"], 2, 2, partners)
    assert search.run() is SolveStatus.SUCCESS
    assert search.plan.group_of("a") == search.plan.group_of("b")
    assert search.plan.group_of("c") != search.plan.group_of("a")


def test_impossible_partition_reports_no_solution():
    constraints = [NotAdjacent("a", "b"), NotAdjacent("b", "c"), NotAdjacent("a", "c")]
    result = solve_groups(
        GroupRequest(entities=["a", "b", "c"], num_groups=2, capacity=3, constraints=constraints, seed=1)
    )
    assert result.status is SolveStatus.NO_SOLUTION
    assert result.plan is None
    assert result.steps > 0


def test_row_preferences_are_ignored_in_group_mode():
    result = solve_groups(
        GroupRequest(
            entities=["a", "b"],
            num_groups=1,
            capacity=2,
            constraints=[PreferredRows("a", 9, 1)],
            seed=2,
        )
    )
    assert result.status is SolveStatus.SUCCESS
    assert sorted(result.plan.groups[0]) == ["a", "b"]


def test_group_solve_is_reproducible_for_a_seed():
    request = GroupRequest(
        entities=_names(12),
        num_groups=4,
        capacity=3,
        constraints=[NotAdjacent("g00", "g05")],
        seed=99,
    )
    first = solve_groups(request)
    second = solve_groups(request)
    assert first.plan.as_lists() == second.plan.as_lists()
    assert first.seed == second.seed == 99


def test_preset_cancel_token_aborts_group_search():
    cancel = threading.Event()
    cancel.set()
    result = solve_groups(GroupRequest(entities=_names(4), num_groups=2, capacity=2, seed=1), cancel=cancel)
    assert result.status is SolveStatus.ABORTED

    search = GroupSearch(_names(4), 2, 2, cancel=cancel)
    assert search.run() is SolveStatus.ABORTED
    assert search.steps == 0


def test_over_capacity_is_an_error_result():
    result = solve_groups(GroupRequest(entities=_names(7), num_groups=2, capacity=3))
    assert result.status is SolveStatus.ERROR
    assert "do not fit" in result.message


def test_group_payload_shape():
    result = solve_groups(GroupRequest(entities=["a", "b", "c"], num_groups=2, capacity=2, seed=3))
    payload = result.to_payload()
    assert payload["ok"] is True
    assert payload["numGroups"] == 2
    assert payload["capacity"] == 2
    assert sorted(n for g in payload["groups"] for n in g) == ["a", "b", "c"]

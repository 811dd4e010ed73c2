"""
Test module for drawing names.

Tests cover:
1. The backtracking draw: complete, fixed-point free, exclusion respecting
2. Explicit failure on infeasible groups and the validated draw
3. Deterministic traversal with an injected random source
4. Draw statistics
5. The legacy randomized-retry baseline
6. The fairpyx algorithm adapter
"""

import copy
import logging

import numpy as np
import pytest
from fairpyx import divide

from secret_santa_problem import (
    Participant,
    build_compatibility_graph,
    compatibility_lists,
    couples_example,
    shared_recipient_example,
)
from secret_santa_solver import (
    InvalidParticipantsError,
    NoValidAssignmentError,
    backtracking_allocation,
    draw,
    draw_with_stats,
    find_assignment,
    format_assignment,
    legacy_retry_draw,
    secret_santa_instance,
)


class IdentityOrder:
    """Random source that keeps candidates in graph order."""

    def permutation(self, x):
        if isinstance(x, int):
            return list(range(x))
        return list(x)


def group(*names, **exclusions):
    return [Participant(name, list(exclusions.get(name, []))) for name in names]


def assert_valid_draw(participants):
    """Every participant gives to exactly one allowed person and receives exactly once."""
    names = [p.name for p in participants]
    recipients = [p.recipient for p in participants]
    assert None not in recipients, "Everyone should have a recipient"
    assert sorted(recipients) == sorted(names), "Everyone should receive exactly one gift"
    for participant in participants:
        assert participant.recipient != participant.name, f"{participant.name} drew themselves"
        assert participant.recipient not in participant.exclusions, f"{participant.name} drew an excluded name"


def test_draw_three_without_exclusions():
    participants = draw(group("A", "B", "C"))
    assert_valid_draw(participants)


def test_draw_couples():
    participants = draw(copy.deepcopy(couples_example), rng=np.random.default_rng(7))
    assert_valid_draw(participants)


def test_draw_empty_group():
    assert draw([]) == []
    assert find_assignment([]) == {}


def test_draw_large_group_with_exclusions():
    names = [f"P{i}" for i in range(40)]
    participants = [Participant(name, [names[(i + 1) % 40], names[(i + 2) % 40]]) for i, name in enumerate(names)]
    assert_valid_draw(draw(participants, rng=np.random.default_rng(3)))


def test_draw_group_deeper_than_recursion_limit():
    """Search depth equals the group size, so groups above the interpreter's recursion limit must still draw."""
    participants = [Participant(f"P{i}") for i in range(1200)]
    assert_valid_draw(draw(participants, rng=np.random.default_rng(0)))


def test_draw_single_participant_fails():
    participants = [Participant("Alice")]
    with pytest.raises(NoValidAssignmentError):
        draw(participants)
    assert participants[0].recipient is None


def test_draw_infeasible_group_fails_without_mutation():
    participants = copy.deepcopy(shared_recipient_example)
    with pytest.raises(NoValidAssignmentError):
        draw(participants)
    assert all(p.recipient is None for p in participants)


def test_validated_draw_rejects_invalid_group():
    participants = group("A", "B", "C", A=["B", "C"])
    with pytest.raises(InvalidParticipantsError) as excinfo:
        draw(participants, validate=True)
    assert excinfo.value.result.participants_with_no_options == ["A"]


def test_validated_draw_accepts_valid_group():
    assert_valid_draw(draw(copy.deepcopy(couples_example), validate=True))


def test_identity_order_is_deterministic():
    """With candidates visited in graph order the search backtracks once and finds a 3-cycle."""
    assignment = find_assignment(group("A", "B", "C"), rng=IdentityOrder())
    assert assignment == {0: 1, 1: 2, 2: 0}


def test_seeded_draws_repeat():
    first = format_assignment(draw(copy.deepcopy(couples_example), rng=np.random.default_rng(42)))
    second = format_assignment(draw(copy.deepcopy(couples_example), rng=np.random.default_rng(42)))
    assert first == second


def test_repeated_draws_vary():
    rng = np.random.default_rng(0)
    outcomes = {
        tuple(sorted(format_assignment(draw(group("A", "B", "C", "D"), rng=rng)).items()))
        for _ in range(50)
    }
    assert len(outcomes) > 1


def test_search_does_not_change_graph():
    participants = copy.deepcopy(couples_example)
    before = compatibility_lists(build_compatibility_graph(participants))
    find_assignment(participants, rng=np.random.default_rng(1))
    assert compatibility_lists(build_compatibility_graph(participants)) == before


def test_draw_with_stats_success():
    participants, stats = draw_with_stats(copy.deepcopy(couples_example), rng=np.random.default_rng(5))
    assert_valid_draw(participants)
    assert stats.total_participants == 6
    assert stats.avg_compatibility_per_person == pytest.approx(26 / 6)
    assert stats.has_impossible_constraints is False
    assert stats.success is True


def test_draw_with_stats_failure_keeps_stats():
    with pytest.raises(NoValidAssignmentError) as excinfo:
        draw_with_stats(group("A", "B", "C", A=["B", "C"]))
    stats = excinfo.value.stats
    assert stats.success is False
    assert stats.has_impossible_constraints is True
    assert stats.to_dict()["total_participants"] == 3


def test_draw_with_stats_failure_with_options_everywhere():
    """Everyone has an option, yet Emily and Ivan both need Eli."""
    with pytest.raises(NoValidAssignmentError) as excinfo:
        draw_with_stats(copy.deepcopy(shared_recipient_example))
    stats = excinfo.value.stats
    assert stats.success is False
    assert stats.has_impossible_constraints is False
    assert stats.total_participants == 3
    assert stats.avg_compatibility_per_person == pytest.approx(4 / 3)


def test_draw_with_stats_empty_group():
    participants, stats = draw_with_stats([])
    assert participants == []
    assert stats.success is True
    assert stats.avg_compatibility_per_person == 0.0


def test_legacy_draw_on_easy_group():
    participants, complete = legacy_retry_draw(group("A", "B", "C", "D", "E"), rng=np.random.default_rng(11))
    assert complete
    assert_valid_draw(participants)


def test_legacy_draw_reports_incomplete(caplog):
    """The baseline never raises; it reports an incomplete draw instead."""
    participants = copy.deepcopy(shared_recipient_example)
    with caplog.at_level(logging.WARNING, logger="secret_santa_solver"):
        participants, complete = legacy_retry_draw(participants, max_retries=20, rng=np.random.default_rng(2))
    assert not complete
    assert None in [p.recipient for p in participants]
    assert "incomplete assignment" in caplog.text


def test_legacy_draw_empty_group():
    assert legacy_retry_draw([]) == ([], True)


def test_fairpyx_adapter():
    participants = copy.deepcopy(couples_example)
    allocation = divide(backtracking_allocation, instance=secret_santa_instance(participants),
                        rng=np.random.default_rng(9))
    received = []
    for participant in participants:
        bundle = list(allocation[participant.name])
        assert len(bundle) == 1, f"{participant.name} should draw exactly one name"
        assert bundle[0] != participant.name
        assert bundle[0] not in participant.exclusions
        received.extend(bundle)
    assert sorted(received) == sorted(p.name for p in participants)


def test_fairpyx_adapter_infeasible():
    with pytest.raises(NoValidAssignmentError):
        divide(backtracking_allocation, instance=secret_santa_instance(shared_recipient_example))

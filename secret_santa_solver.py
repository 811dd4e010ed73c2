"""
Drawing names for a Secret Santa exchange.

The primary algorithm is a depth-first backtracking search over the
compatibility graph: givers are assigned in position order, each one trying
its compatible recipients in a freshly shuffled order, undoing the tentative
assignment whenever a subtree runs out of options. It either returns a
complete assignment (a permutation without fixed points that respects every
exclusion) or fails explicitly.

The worst case is exponential, so callers should run the validator first;
it rejects provably infeasible groups cheaply.

A randomized-retry draw is kept as a naive baseline for comparison only. It
is Monte-Carlo, not exhaustive, and can miss a valid assignment that exists.

Participants are mutated in place (their ``recipient`` field), so two draws
must never run concurrently over the same participant objects.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
from fairpyx import AllocationBuilder, Instance

from secret_santa_problem import (
    Assignment,
    Participant,
    build_compatibility_graph,
    build_exclusion_index,
    compatibility_lists,
    out_degrees,
)
from secret_santa_validation import ValidationResult, validate_participants

logger = logging.getLogger(__name__)

# Attempts made by the legacy retry draw
MAX_RETRIES = 1000


class NoValidAssignmentError(ValueError):
    """The search exhausted every candidate without a complete assignment."""

    def __init__(self, message: str = "no valid assignment found - constraints are too restrictive",
                 stats: Optional["DrawStats"] = None):
        super().__init__(message)
        self.stats = stats


class InvalidParticipantsError(ValueError):
    """A validated draw was refused because the participant list is invalid."""

    def __init__(self, result: ValidationResult):
        super().__init__("invalid participants: " + "; ".join(result.errors))
        self.result = result


@dataclass
class DrawStats:
    """
    Diagnostics collected alongside a backtracking draw.

    Attributes:
        total_participants: Number of participants in the draw
        avg_compatibility_per_person: Mean number of compatible recipients
        has_impossible_constraints: Some giver has no compatible recipient
        success: Whether the draw produced a complete assignment
    """
    total_participants: int = 0
    avg_compatibility_per_person: float = 0.0
    has_impossible_constraints: bool = False
    success: bool = False

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "total_participants": self.total_participants,
            "avg_compatibility_per_person": self.avg_compatibility_per_person,
            "has_impossible_constraints": self.has_impossible_constraints,
            "success": self.success,
        }


def find_assignment(participants: Sequence[Participant],
                    rng=None,
                    G: Optional[nx.DiGraph] = None) -> Optional[Assignment]:
    """
    Search for a complete assignment without touching the participants.

    Args:
        participants: The participants in draw order
        rng: Random source with a ``permutation`` method, typically a
             ``numpy.random.Generator``; only the visitation order of
             candidates depends on it
        G: A prebuilt compatibility graph (built if omitted)

    Returns:
        Mapping from giver index to recipient index, or None if no valid
        assignment exists
    """
    if rng is None:
        rng = np.random.default_rng()
    if G is None:
        G = build_compatibility_graph(participants, build_exclusion_index(participants))

    graph = compatibility_lists(G)
    n = len(graph)
    assignment: Assignment = {}
    used = [False] * n
    if n == 0:
        return assignment

    def visit(giver: int) -> list:
        return [giver, [int(candidate) for candidate in rng.permutation(graph[giver])], 0]

    # Explicit stack of [giver, candidates in visiting order, next position]
    stack = [visit(0)]
    while stack:
        frame = stack[-1]
        giver, candidates, position = frame
        if giver in assignment:
            # Back from a subtree that failed: undo and try the next candidate
            used[assignment.pop(giver)] = False

        while position < len(candidates) and used[candidates[position]]:
            position += 1
        if position == len(candidates):
            logger.debug(f"Giver {giver}: no candidate left, backtracking")
            stack.pop()
            continue

        recipient = candidates[position]
        frame[2] = position + 1
        assignment[giver] = recipient
        used[recipient] = True
        if giver + 1 == n:
            return assignment
        stack.append(visit(giver + 1))

    return None


def apply_assignment(participants: Sequence[Participant], assignment: Assignment) -> List[Participant]:
    """Write the recipients' names onto the givers."""
    for giver, recipient in assignment.items():
        participants[giver].recipient = participants[recipient].name
    return list(participants)


def draw(participants: Sequence[Participant], rng=None, validate: bool = False) -> List[Participant]:
    """
    Draw names with the backtracking search.

    Args:
        participants: The participants in draw order
        rng: Random source, see ``find_assignment``
        validate: Run the validator first and refuse invalid input

    Returns:
        The participants, each with ``recipient`` set

    Raises:
        InvalidParticipantsError: ``validate`` is set and validation failed
        NoValidAssignmentError: No valid assignment exists

    >>> people = [Participant("A"), Participant("B")]
    >>> [p.recipient for p in draw(people)]
    ['B', 'A']
    """
    if validate:
        result = validate_participants(participants)
        if not result.is_valid:
            raise InvalidParticipantsError(result)

    assignment = find_assignment(participants, rng)
    if assignment is None:
        raise NoValidAssignmentError()
    return apply_assignment(participants, assignment)


def draw_with_stats(participants: Sequence[Participant], rng=None) -> Tuple[List[Participant], DrawStats]:
    """
    Draw names and report diagnostics about the compatibility graph.

    Args:
        participants: The participants in draw order
        rng: Random source, see ``find_assignment``

    Returns:
        A tuple of (participants, stats)

    Raises:
        NoValidAssignmentError: No valid assignment exists; the collected
            stats are attached as ``error.stats``
    """
    G = build_compatibility_graph(participants, build_exclusion_index(participants))
    degrees = out_degrees(G)

    stats = DrawStats(total_participants=len(participants))
    if len(degrees):
        stats.avg_compatibility_per_person = float(degrees.mean())
        stats.has_impossible_constraints = bool((degrees == 0).any())

    assignment = find_assignment(participants, rng, G)
    stats.success = assignment is not None
    _log_stats(stats)

    if assignment is None:
        raise NoValidAssignmentError(stats=stats)
    return apply_assignment(participants, assignment), stats


def legacy_retry_draw(participants: Sequence[Participant],
                      max_retries: int = MAX_RETRIES,
                      rng=None) -> Tuple[List[Participant], bool]:
    """
    Naive randomized-retry draw, kept only as a comparison baseline.

    The giver order is shuffled once. Each attempt shuffles the recipients and
    greedily gives every giver the first unused recipient it may give to,
    stopping as soon as one attempt matches everybody. This can fail on groups
    that do have a valid assignment; use ``draw`` for a guaranteed result.

    Args:
        participants: The participants
        max_retries: Number of attempts before giving up
        rng: Random source with a ``permutation`` method

    Returns:
        A tuple of (participants, complete). When ``complete`` is False the
        recipients of the last attempt are left in place, some of them None.
    """
    if rng is None:
        rng = np.random.default_rng()

    n = len(participants)
    givers = [participants[int(i)] for i in rng.permutation(n)]
    complete = n == 0

    for attempt in range(max_retries):
        if complete:
            break
        for participant in participants:
            participant.recipient = None

        recipients = [participants[int(i)] for i in rng.permutation(n)]
        used = [False] * n
        used_count = 0
        for giver in givers:
            matched = False
            for j, candidate in enumerate(recipients):
                if used[j] or not giver.can_give_to(candidate):
                    continue
                giver.update_recipient(candidate)
                used[j] = True
                used_count += 1
                matched = True
                break
            if not matched:
                break

        complete = used_count == n
        if complete:
            logger.info(f"Legacy draw matched everyone on attempt {attempt + 1}")

    if not complete:
        logger.warning(f"Legacy draw gave up after {max_retries} attempts with an incomplete assignment")
    return list(participants), complete


def secret_santa_instance(participants: Sequence[Participant]) -> Instance:
    """
    Express a draw as a fairpyx instance.

    Agents and items are both the participant names. Every agent and item has
    capacity 1, and each agent conflicts with itself and its exclusions.
    """
    names = [participant.name for participant in participants]
    valuations = {
        giver: {recipient: (0 if recipient == giver else 1) for recipient in names}
        for giver in names
    }
    conflicts = {
        participant.name: {participant.name} | set(participant.exclusions)
        for participant in participants
    }
    return Instance(
        valuations=valuations,
        agent_capacities={name: 1 for name in names},
        item_capacities={name: 1 for name in names},
        agent_conflicts=conflicts,
    )


def backtracking_allocation(alloc: AllocationBuilder, rng=None) -> None:
    """
    fairpyx algorithm wrapping the backtracking draw.

    Use it through the fairpyx framework:

        divide(backtracking_allocation, instance=secret_santa_instance(people))

    Args:
        alloc: The allocation builder of an instance made by
               ``secret_santa_instance``
        rng: Random source, see ``find_assignment``

    Raises:
        NoValidAssignmentError: No valid assignment exists
    """
    agents = list(alloc.instance.agents)
    participants = [
        Participant(agent, sorted(set(alloc.instance.agent_conflicts(agent)) - {agent}))
        for agent in agents
    ]
    assignment = find_assignment(participants, rng)
    if assignment is None:
        raise NoValidAssignmentError()
    for giver, recipient in assignment.items():
        alloc.give(agents[giver], agents[recipient])


def _log_stats(stats: DrawStats) -> None:
    logger.info("\nDRAW STATISTICS:")
    logger.info("-" * 50)
    logger.info(f"| {'Metric':<25} | {'Value':<20} |")
    logger.info("-" * 50)
    logger.info(f"| {'Participants':<25} | {stats.total_participants:<20} |")
    logger.info(f"| {'Avg compatibility':<25} | {stats.avg_compatibility_per_person:<20.2f} |")
    logger.info(f"| {'Impossible constraints':<25} | {str(stats.has_impossible_constraints):<20} |")
    logger.info(f"| {'Success':<25} | {str(stats.success):<20} |")
    logger.info("-" * 50)


def format_assignment(participants: Sequence[Participant]) -> Dict[str, Optional[str]]:
    """Giver name -> recipient name (None where unassigned)."""
    return {participant.name: participant.recipient for participant in participants}

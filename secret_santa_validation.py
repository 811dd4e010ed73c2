"""
Pre-flight validation of a Secret Santa draw.

A participant list can be rejected long before any search runs: an empty or
one-person group, duplicate names, or a giver who excluded everybody. These
per-participant checks are not enough, though. Two givers may each have a
compatible recipient and still compete for the same single person, so the
validator also runs a global feasibility test over the compatibility graph:

- For small groups (N <= exact_limit) the exact test from Hall's Marriage
  Theorem: a perfect matching of givers to recipients exists iff every subset
  S of givers can reach at least |S| distinct recipients.
- For larger groups a polynomial heuristic that catches the common
  "two recipients both depend on the same single giver" pattern. It is not
  complete: it may accept groups that have no valid draw.

The validator never mutates participants and never raises for bad input;
everything it finds is reported in a ValidationResult.
"""

import itertools
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import networkx as nx

from secret_santa_problem import (
    Participant,
    build_compatibility_graph,
    build_exclusion_index,
    givers_for,
    out_degrees,
)

logger = logging.getLogger(__name__)

# Largest group checked exhaustively (2^N - 1 subsets)
HALL_EXACT_LIMIT = 10


@dataclass
class ValidationResult:
    """
    Outcome of validating a participant list.

    Attributes:
        is_valid: False iff at least one hard error fired
        errors: Hard errors, any of them makes a draw impossible
        warnings: Data-quality findings that never affect validity
        participants_with_no_options: Givers with zero compatible recipients
        min_compatibility: Smallest number of compatible recipients of any giver
        avg_compatibility: Mean number of compatible recipients per giver
        total_participants: Number of participants checked
    """
    is_valid: bool = True
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    participants_with_no_options: List[str] = field(default_factory=list)
    min_compatibility: int = 0
    avg_compatibility: float = 0.0
    total_participants: int = 0

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return {
            "is_valid": self.is_valid,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "participants_with_no_options": list(self.participants_with_no_options),
            "min_compatibility": self.min_compatibility,
            "avg_compatibility": self.avg_compatibility,
            "total_participants": self.total_participants,
        }


def validate_participants(participants: Sequence[Participant],
                          exact_limit: int = HALL_EXACT_LIMIT) -> ValidationResult:
    """
    Validate a participant list before drawing.

    Checks, in order:
    1. Empty list (error, stops here)
    2. Fewer than 2 participants (error, stops here)
    3. Duplicate names (one error per duplicate)
    4. Missing contact info (warning)
    5. Exclusions naming unknown participants (warning)
    6. Givers with no compatible recipient (error)
    7. Low minimum / average compatibility (warning)
    8. Global feasibility: Hall's theorem for N <= exact_limit,
       the heuristic above it (error)

    Steps 7 and 8 only run when no hard error fired before them.

    :param participants: The participants in draw order
    :param exact_limit: Largest N checked exhaustively with Hall's theorem
    :return: A ValidationResult

    >>> validate_participants([]).errors
    ['no participants provided']
    """
    n = len(participants)
    result = ValidationResult(total_participants=n)

    if n == 0:
        result.add_error("no participants provided")
        return result

    if n < 2:
        result.add_error("need at least 2 participants for Secret Santa")
        return result

    seen = set()
    for participant in participants:
        if participant.name in seen:
            result.add_error(f"duplicate participant name: {participant.name}")
        seen.add(participant.name)

    exclusion_index = build_exclusion_index(participants)
    G = build_compatibility_graph(participants, exclusion_index)

    for participant in participants:
        if not participant.contact_info:
            result.warnings.append(f"participant {participant.name} has no contact info")
        for excluded in participant.exclusions:
            if excluded not in seen:
                result.warnings.append(
                    f"participant {participant.name} excludes non-existent participant: {excluded}")

    degrees = out_degrees(G)
    for i, degree in enumerate(degrees):
        if degree == 0:
            name = participants[i].name
            result.participants_with_no_options.append(name)
            result.add_error(
                f"participant {name} has no valid recipients (excluded everyone or too many exclusions)")

    result.min_compatibility = int(degrees.min())
    result.avg_compatibility = float(degrees.mean())

    if result.is_valid and result.min_compatibility < 2 and n > 3:
        result.warnings.append(
            f"low compatibility detected: some participants only have "
            f"{result.min_compatibility} valid recipient(s)")

    if result.is_valid and result.avg_compatibility < n / 2:
        result.warnings.append(
            f"low average compatibility: {result.avg_compatibility:.1f} "
            f"out of {n - 1} possible recipients")

    if result.is_valid:
        if n <= exact_limit:
            violation = check_halls_theorem(G)
            if violation is not None:
                givers, recipients = violation
                names = ", ".join(participants[i].name for i in givers)
                result.add_error(
                    f"impossible configuration detected: {names} can only give to "
                    f"{len(recipients)} distinct recipient(s) "
                    f"(Hall's Marriage Theorem violation)")
        elif not check_heuristic_feasibility(G):
            result.add_error("impossible configuration detected: constraints appear too restrictive")

    _log_result(result)
    return result


def is_feasible_quick(participants: Sequence[Participant]) -> bool:
    """
    Fast yes/no check: at least two participants and every giver has at least
    one compatible recipient. No messages, no global test.
    """
    if len(participants) < 2:
        return False
    G = build_compatibility_graph(participants)
    return all(G.out_degree(i) > 0 for i in G.nodes)


def check_halls_theorem(G: nx.DiGraph) -> Optional[Tuple[Tuple[int, ...], set]]:
    """
    Exact feasibility test based on Hall's Marriage Theorem.

    For every non-empty subset S of givers, the union of their compatible
    recipients must have at least |S| members. This enumerates all 2^N - 1
    subsets, so callers cap N.

    :param G: The compatibility graph
    :return: The first violating (givers, recipients) pair, or None if the
             condition holds for every subset

    >>> from secret_santa_problem import shared_recipient_example
    >>> givers, recipients = check_halls_theorem(build_compatibility_graph(shared_recipient_example))
    >>> givers, sorted(recipients)
    ((0, 2), [1])
    """
    neighbours: Dict[int, set] = {i: set(G.successors(i)) for i in G.nodes}
    n = len(neighbours)
    for size in range(1, n + 1):
        for subset in itertools.combinations(range(n), size):
            reachable = set().union(*(neighbours[i] for i in subset))
            if len(reachable) < size:
                logger.debug(f"Hall violation: givers {subset} reach only {sorted(reachable)}")
                return subset, reachable
    return None


def check_heuristic_feasibility(G: nx.DiGraph) -> bool:
    """
    Polynomial feasibility heuristic for groups too large for the exact test.

    Rejects when:
    - the graph has fewer edges than participants,
    - some recipient cannot receive from anybody, or
    - two scarce recipients (at most two possible givers each) both depend
      on exactly one shared giver.

    The last rule targets the "two mutually excluded people who both depend
    on the same provider" pattern. Two recipients sharing two givers pass,
    since those givers can cover one each. It is a filter, not a proof: it
    accepts groups that only a larger subset of givers would expose.

    :param G: The compatibility graph
    :return: False if the group looks infeasible, True otherwise
    """
    n = G.number_of_nodes()
    if G.number_of_edges() < n:
        logger.debug(f"Heuristic: {G.number_of_edges()} edges for {n} participants")
        return False

    providers = [givers_for(G, j) for j in range(n)]
    if any(not givers for givers in providers):
        logger.debug("Heuristic: a recipient has no possible giver")
        return False

    scarce = [j for j in range(n) if len(providers[j]) <= 2]
    for i, j in itertools.combinations(scarce, 2):
        if len(providers[i] | providers[j]) < 2:
            logger.debug(f"Heuristic: recipients {i} and {j} both depend on giver {sorted(providers[i])}")
            return False

    return True


def _log_result(result: ValidationResult) -> None:
    logger.info("\nVALIDATION RESULT:")
    logger.info("-" * 50)
    logger.info(f"| {'Metric':<25} | {'Value':<20} |")
    logger.info("-" * 50)
    logger.info(f"| {'Participants':<25} | {result.total_participants:<20} |")
    logger.info(f"| {'Valid':<25} | {str(result.is_valid):<20} |")
    logger.info(f"| {'Min compatibility':<25} | {result.min_compatibility:<20} |")
    logger.info(f"| {'Avg compatibility':<25} | {result.avg_compatibility:<20.2f} |")
    logger.info("-" * 50)
    for error in result.errors:
        logger.info(f"ERROR: {error}")
    for warning in result.warnings:
        logger.warning(warning)

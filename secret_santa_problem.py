"""The Secret Santa (gift exchange) assignment problem.

A group of participants draws names: every participant (a giver) must be
assigned exactly one other participant (a recipient) so that every participant
receives exactly one gift. A giver may declare exclusions, names they must not
be assigned (a partner, last year's recipient, ...). Exclusions are asymmetric:
A excluding B says nothing about B giving to A.

Viewed as a graph problem, the givers and recipients are the two sides of a
bipartite graph, and a valid draw is a perfect matching without fixed points,
i.e. a derangement further restricted by the exclusion edges.

This module holds the data model and the two derived structures the
validator and the solver share:

- the exclusion index (name -> set of excluded names), and
- the compatibility graph (giver position -> allowed recipient positions).
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Set

import networkx as nx
import numpy as np

logger = logging.getLogger(__name__)

# giver index -> recipient index
Assignment = Dict[int, int]


@dataclass
class Participant:
    """
    One person taking part in the draw.

    Attributes:
        name: Unique name, used as the key everywhere else
        exclusions: Names this participant must not be assigned
        notification_type: How the participant wants to be told (e.g. "email")
        contact_info: Addresses for that notification channel
        recipient: Name of the assigned recipient, set by a successful draw
    """
    name: str
    exclusions: List[str] = field(default_factory=list)
    notification_type: str = ""
    contact_info: List[str] = field(default_factory=list)
    recipient: Optional[str] = None

    def can_give_to(self, other: "Participant") -> bool:
        return other.name != self.name and other.name not in self.exclusions

    def update_recipient(self, other: "Participant") -> None:
        """
        Assign ``other`` as this participant's recipient.

        :param other: The proposed recipient
        :raises ValueError: If ``other`` is this participant or is excluded
        """
        if other.name == self.name:
            raise ValueError(f"participant {self.name} cannot be assigned to themselves")
        if other.name in self.exclusions:
            raise ValueError(f"participant {other.name} is excluded by {self.name}")
        self.recipient = other.name

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Participant":
        """Build a participant from a parsed mapping (file row, API body)."""
        return cls(
            name=data["name"],
            exclusions=list(data.get("exclusions") or []),
            notification_type=data.get("notification_type") or "",
            contact_info=list(data.get("contact_info") or []),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "exclusions": list(self.exclusions),
            "notification_type": self.notification_type,
            "contact_info": list(self.contact_info),
            "recipient": self.recipient,
        }


def build_exclusion_index(participants: Sequence[Participant]) -> Dict[str, Set[str]]:
    """
    Build the lookup of excluded names per participant.

    Only participants that declare at least one exclusion get an entry.
    Unknown names are kept as they are; reporting them is the validator's job.

    :param participants: The participants in draw order
    :return: Mapping from participant name to the set of names it excludes

    >>> index = build_exclusion_index([Participant("A", ["B"]), Participant("B")])
    >>> index
    {'A': {'B'}}
    """
    index: Dict[str, Set[str]] = {}
    for participant in participants:
        if participant.exclusions:
            index.setdefault(participant.name, set()).update(participant.exclusions)
    return index


def build_compatibility_graph(participants: Sequence[Participant],
                              exclusion_index: Optional[Dict[str, Set[str]]] = None) -> nx.DiGraph:
    """
    Build the directed compatibility graph of the draw.

    The graph has:
    - Nodes: one per participant position 0..N-1, with a ``name`` attribute
    - Edges: i -> j when giver i may be assigned recipient j, that is
             i != j and name(j) is not excluded by name(i)

    Edges are inserted in ascending recipient order, so ``graph.successors(i)``
    yields the same ordered list for the same input order. No randomness is
    involved here.

    :param participants: The participants in draw order
    :param exclusion_index: A prebuilt exclusion index (built if omitted)
    :return: A NetworkX DiGraph
    """
    if exclusion_index is None:
        exclusion_index = build_exclusion_index(participants)

    G = nx.DiGraph()
    for i, participant in enumerate(participants):
        G.add_node(i, name=participant.name)

    for i, giver in enumerate(participants):
        excluded = exclusion_index.get(giver.name, set())
        for j, recipient in enumerate(participants):
            if i == j or recipient.name in excluded:
                continue
            G.add_edge(i, j)

    logger.debug(f"Compatibility graph: {G.number_of_nodes()} participants, {G.number_of_edges()} edges")
    return G


def compatibility_lists(G: nx.DiGraph) -> List[List[int]]:
    """
    Adjacency-list view of the compatibility graph.

    >>> G = build_compatibility_graph([Participant("A", ["C"]), Participant("B"), Participant("C")])
    >>> compatibility_lists(G)
    [[1], [0, 2], [0, 1]]
    """
    return [list(G.successors(i)) for i in range(G.number_of_nodes())]


def out_degrees(G: nx.DiGraph) -> np.ndarray:
    """Number of compatible recipients per giver, in position order."""
    return np.fromiter((G.out_degree(i) for i in range(G.number_of_nodes())),
                       dtype=int, count=G.number_of_nodes())


def givers_for(G: nx.DiGraph, recipient: int) -> Set[int]:
    """Positions that are allowed to give to ``recipient``."""
    return set(G.predecessors(recipient))


# Example groups, handy in the REPL and in tests
couples_example = [
    Participant("Alice", ["Bob"], "email", ["alice@example.com"]),
    Participant("Bob", ["Alice"], "email", ["bob@example.com"]),
    Participant("Carol", ["David"], "email", ["carol@example.com"]),
    Participant("David", ["Carol"], "email", ["david@example.com"]),
    Participant("Eve", [], "email", ["eve@example.com"]),
    Participant("Frank", [], "email", ["frank@example.com"]),
]

# Emily and Ivan exclude each other, so both depend on Eli alone
shared_recipient_example = [
    Participant("Emily", ["Ivan"], "email", ["emily@example.com"]),
    Participant("Eli", [], "email", ["eli@example.com"]),
    Participant("Ivan", ["Emily"], "email", ["ivan@example.com"]),
]

"""Generic transition guard engine and the state graphs that use it.

A ``StateGraph`` maps every state to the set of states it may move to.
Terminal states map to an empty set; a state missing from the map permits
nothing. Some graphs attach gates to target states: a gate names an
external record that must exist before a structurally permitted transition
may apply.

The engine never raises for unknown states; it returns a ``Decision`` and
callers decide how to surface it.
"""

import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

# Decision results
ALLOWED = "allowed"
BLOCKED = "blocked"
GATE_REQUIRED = "gate_required"
GATE_COMPLETED = "gate_completed"

# Block reasons
NO_SUCH_STATE = "no_such_state"
TRANSITION_NOT_PERMITTED = "transition_not_permitted"

# Receives the required gate names, returns the ones not yet satisfied
GateCheck = Callable[[tuple[str, ...]], Awaitable[Iterable[str]]]


@dataclass(frozen=True)
class StateGraph:
    """A named directed graph of permitted state transitions."""

    name: str
    edges: Mapping[str, frozenset[str]]
    gates: Mapping[str, tuple[str, ...]] = field(default_factory=dict)
    # Current states not present in ``edges`` are read as this state
    default_state: str | None = None

    @classmethod
    def build(
        cls,
        name: str,
        edges: Mapping[str, Iterable[str]],
        gates: Mapping[str, Iterable[str]] | None = None,
        default_state: str | None = None,
    ) -> "StateGraph":
        return cls(
            name=name,
            edges={state: frozenset(nxt) for state, nxt in edges.items()},
            gates={state: tuple(g) for state, g in (gates or {}).items()},
            default_state=default_state,
        )

    @property
    def states(self) -> frozenset[str]:
        return frozenset(self.edges)

    def normalize(self, state: str | None) -> str | None:
        if self.default_state is not None and state not in self.edges:
            return self.default_state
        return state

    def is_terminal(self, state: str) -> bool:
        return state in self.edges and not self.edges[state]

    def gates_for(self, to_state: str) -> tuple[str, ...]:
        return self.gates.get(to_state, ())


@dataclass(frozen=True)
class Decision:
    """Outcome of a guarded transition check."""

    graph: str
    from_state: str
    to_state: str
    result: str
    reason: str | None = None
    missing: tuple[str, ...] = ()

    @property
    def permitted(self) -> bool:
        return self.result in (ALLOWED, GATE_COMPLETED)


def check(graph: StateGraph, from_state: str | None, to_state: str) -> Decision:
    """Structural check only: is ``from_state -> to_state`` an edge of the graph?"""
    current = graph.normalize(from_state)
    label = current if current is not None else "none"
    if current is None or current not in graph.edges or to_state not in graph.edges:
        return Decision(graph.name, label, to_state, BLOCKED, NO_SUCH_STATE)
    if to_state not in graph.edges[current]:
        return Decision(graph.name, label, to_state, BLOCKED, TRANSITION_NOT_PERMITTED)
    return Decision(graph.name, label, to_state, ALLOWED)


async def apply(
    graph: StateGraph,
    from_state: str | None,
    to_state: str,
    gate_check: GateCheck | None = None,
) -> Decision:
    """Structural check followed by gate evaluation for gated targets.

    Without a ``gate_check`` every required gate counts as missing.
    """
    decision = check(graph, from_state, to_state)
    if not decision.permitted:
        return decision

    required = graph.gates_for(to_state)
    if not required:
        return decision

    missing = tuple(await gate_check(required)) if gate_check is not None else required
    if missing:
        return Decision(
            graph.name, decision.from_state, to_state, GATE_REQUIRED, GATE_REQUIRED, missing
        )
    return Decision(graph.name, decision.from_state, to_state, GATE_COMPLETED)


# ---------------------------------------------------------------------------
# Graph registry
# ---------------------------------------------------------------------------

_REGISTRY: dict[str, StateGraph] = {}


def register_graph(graph: StateGraph) -> StateGraph:
    _REGISTRY[graph.name] = graph
    return graph


def get_graph(name: str) -> StateGraph:
    try:
        return _REGISTRY[name]
    except KeyError:
        raise KeyError(f"Unknown state graph: {name!r}") from None


def registered_graphs() -> list[str]:
    return sorted(_REGISTRY)


DELIVERY_STATUS = register_graph(
    StateGraph.build(
        "delivery_status",
        {
            "pending": {"scheduled", "in-transit"},
            "scheduled": {"in-transit", "pending"},
            "in-transit": {"delivered", "completed", "completed_with_issues", "partial", "failed"},
            "partial": {"in-transit", "completed_with_issues"},
            "delivered": {"completed"},
            "completed": set(),
            "completed_with_issues": set(),
            "failed": {"pending"},
        },
        default_state="pending",
    )
)

PIPELINE_STAGE = register_graph(
    StateGraph.build(
        "pipeline_stage",
        {
            "new": {"telephonic_enquiries", "qualified", "lost"},
            "telephonic_enquiries": {"qualified", "lost"},
            "qualified": {"rfi", "estimation", "hot_enquiries", "lost"},
            "rfi": {"qc_review", "addendums", "estimation", "lost"},
            "qc_review": {"estimation", "addendums", "lost"},
            "addendums": {"qc_review", "estimation", "lost"},
            "estimation": {"hot_enquiries", "quotation_priority", "quotation_bids", "lost"},
            "hot_enquiries": {"quotation_priority", "quotation_bids", "lost"},
            "quotation_priority": {"quotation_bids", "won", "lost"},
            "quotation_bids": {"quotation_priority", "won", "lost"},
            "won": {"shop_drawing", "delivered"},
            "shop_drawing": {"shop_drawing_approval"},
            "shop_drawing_approval": {"shop_drawing", "delivered"},
            "delivered": set(),
            "lost": {"new"},
        },
        gates={
            "qualified": ("qualification",),
            "quotation_priority": ("pricing",),
            "quotation_bids": ("pricing",),
            "lost": ("loss",),
            "delivered": ("outcome",),
        },
    )
)

# "idle" stands for "machine has no active run"
MACHINE_RUN = register_graph(
    StateGraph.build(
        "machine_run",
        {
            "idle": {"running"},
            "running": {"paused", "blocked", "completed"},
            "paused": {"running", "blocked"},
            "blocked": {"running"},
            "completed": set(),
        },
    )
)

# Manual status changes; run-bearing statuses only move through runs
MACHINE_STATUS = register_graph(
    StateGraph.build(
        "machine_status",
        {
            "idle": {"blocked", "down"},
            "blocked": {"idle", "down"},
            "down": {"idle"},
            "running": set(),
            "paused": set(),
        },
    )
)

# race_match_analysis/selection.py
"""
Stepwise term selection by an information criterion.

A model is a set of terms; each term is a frozenset of factor names (an
interaction of those factors). The search is a greedy local search: at each
step every allowed move (drop or add one term) is scored and the best one is
taken, until no move strictly improves the score.

Moves keep models hierarchical:
- a term can be dropped only if no higher-order term containing it remains
- a term can be added only if all of its lower-order margins are present

The search strategy decides where to start and which moves are allowed, so
forward / backward / bidirectional searches share the same loop. Candidates are
scored in scope order and ties go to the first candidate, which keeps the
result independent of set iteration order.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from itertools import combinations

logger = logging.getLogger(__name__)

Term = frozenset[str]
ScoreFn = Callable[[tuple[Term, ...]], float]


def term_label(term: Term) -> str:
    return ":".join(sorted(term))


def is_droppable(term: Term, current: Sequence[Term]) -> bool:
    return not any(term < other for other in current)


def is_addable(term: Term, current: Sequence[Term]) -> bool:
    if term in current:
        return False
    margins = [frozenset(sub) for sub in combinations(sorted(term), len(term) - 1) if sub]
    return all(m in current for m in margins)


@dataclass(frozen=True)
class Move:
    action: str  # "drop" or "add"
    term: Term

    def apply(self, current: tuple[Term, ...], scope: Sequence[Term]) -> tuple[Term, ...]:
        if self.action == "drop":
            keep = set(current) - {self.term}
        else:
            keep = set(current) | {self.term}
        return tuple(t for t in scope if t in keep)


class SearchStrategy:
    """Base strategy: subclasses choose a starting model and allowed moves."""

    name = "base"

    def start(self, scope: Sequence[Term]) -> tuple[Term, ...]:
        raise NotImplementedError

    def moves(self, current: tuple[Term, ...], scope: Sequence[Term]) -> list[Move]:
        raise NotImplementedError

    def _drops(self, current: tuple[Term, ...]) -> list[Move]:
        return [Move("drop", t) for t in current if is_droppable(t, current)]

    def _adds(self, current: tuple[Term, ...], scope: Sequence[Term]) -> list[Move]:
        return [Move("add", t) for t in scope if is_addable(t, current)]


class BidirectionalStepwise(SearchStrategy):
    """Start from the full scope; consider dropping and re-adding terms."""

    name = "both"

    def start(self, scope: Sequence[Term]) -> tuple[Term, ...]:
        return tuple(scope)

    def moves(self, current: tuple[Term, ...], scope: Sequence[Term]) -> list[Move]:
        return self._drops(current) + self._adds(current, scope)


class BackwardElimination(SearchStrategy):
    name = "backward"

    def start(self, scope: Sequence[Term]) -> tuple[Term, ...]:
        return tuple(scope)

    def moves(self, current: tuple[Term, ...], scope: Sequence[Term]) -> list[Move]:
        return self._drops(current)


class ForwardSelection(SearchStrategy):
    name = "forward"

    def start(self, scope: Sequence[Term]) -> tuple[Term, ...]:
        return ()

    def moves(self, current: tuple[Term, ...], scope: Sequence[Term]) -> list[Move]:
        return self._adds(current, scope)


STRATEGIES: dict[str, type[SearchStrategy]] = {
    BidirectionalStepwise.name: BidirectionalStepwise,
    BackwardElimination.name: BackwardElimination,
    ForwardSelection.name: ForwardSelection,
}


def get_strategy(name: str) -> SearchStrategy:
    try:
        return STRATEGIES[name]()
    except KeyError:
        raise ValueError(f"Unknown selection strategy {name!r}; expected one of {sorted(STRATEGIES)}") from None


@dataclass(frozen=True)
class SelectionStep:
    step: int
    action: str
    term: str
    score: float


@dataclass
class SelectionResult:
    terms: tuple[Term, ...]
    score: float
    strategy: str
    history: list[SelectionStep] = field(default_factory=list)
    n_evaluated: int = 0


def select_terms(
    scope: Sequence[Term],
    score: ScoreFn,
    strategy: SearchStrategy | None = None,
    *,
    start: Sequence[Term] | None = None,
    max_steps: int | None = None,
    label: Callable[[Term], str] = term_label,
) -> SelectionResult:
    """
    Run a greedy search over term sets, minimising ``score``.

    Args:
        scope: All candidate terms, in the order used for tie-breaking
        score: Maps an ordered tuple of terms to a criterion (lower is better)
        strategy: Search strategy (default: BidirectionalStepwise)
        start: Starting terms (default: strategy.start(scope))
        max_steps: Stop after this many accepted moves
        label: Term -> display name for logging and history

    Returns:
        SelectionResult with the selected terms, their score and the accepted moves
    """
    strategy = strategy or BidirectionalStepwise()
    scope = tuple(scope)
    cache: dict[frozenset[Term], float] = {}

    def evaluate(terms: tuple[Term, ...]) -> float:
        key = frozenset(terms)
        if key not in cache:
            cache[key] = float(score(terms))
        return cache[key]

    if start is None:
        current = strategy.start(scope)
    else:
        wanted = set(start)
        current = tuple(t for t in scope if t in wanted)
    current_score = evaluate(current)

    history = [SelectionStep(step=0, action="start", term="", score=current_score)]
    logger.info("Stepwise selection (%s): start with %d terms, score=%.3f", strategy.name, len(current), current_score)

    step = 0
    while max_steps is None or step < max_steps:
        best_move: Move | None = None
        best_terms = current
        best_score = current_score

        for move in strategy.moves(current, scope):
            candidate = move.apply(current, scope)
            s = evaluate(candidate)
            if s < best_score:
                best_move, best_terms, best_score = move, candidate, s

        if best_move is None:
            break

        step += 1
        current, current_score = best_terms, best_score
        history.append(SelectionStep(step=step, action=best_move.action, term=label(best_move.term), score=best_score))
        logger.info("  Step %d: %s %s -> score=%.3f", step, best_move.action, label(best_move.term), best_score)

    logger.info("  Selected %d terms after %d steps (%d models scored)", len(current), step, len(cache))

    return SelectionResult(
        terms=current,
        score=current_score,
        strategy=strategy.name,
        history=history,
        n_evaluated=len(cache),
    )

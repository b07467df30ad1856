"""Tests for the stepwise term search, using hand-written score tables"""

import pytest

from race_match_analysis.selection import (
    BackwardElimination,
    BidirectionalStepwise,
    ForwardSelection,
    get_strategy,
    is_addable,
    is_droppable,
    select_terms,
    term_label,
)

A = frozenset({"a"})
B = frozenset({"b"})
AB = frozenset({"a", "b"})
SCOPE = (A, B, AB)

SCORES = {
    frozenset({A, B, AB}): 10.0,
    frozenset({A, B}): 5.0,
    frozenset({A}): 1.0,
    frozenset({B}): 4.0,
    frozenset(): 8.0,
}


def table_score(table):
    calls = []

    def score(terms):
        calls.append(terms)
        return table[frozenset(terms)]

    score.calls = calls
    return score


@pytest.mark.parametrize("strategy", [BidirectionalStepwise(), BackwardElimination(), ForwardSelection()])
def test_all_strategies_reach_best_model(strategy):
    result = select_terms(SCOPE, table_score(SCORES), strategy)

    assert result.terms == (A,)
    assert result.score == 1.0
    assert result.strategy == strategy.name


def test_history_records_accepted_moves():
    result = select_terms(SCOPE, table_score(SCORES), BidirectionalStepwise())

    assert [(s.action, s.term) for s in result.history] == [("start", ""), ("drop", "a:b"), ("drop", "b")]
    assert [s.score for s in result.history] == [10.0, 5.0, 1.0]


def test_each_model_scored_once():
    score = table_score(SCORES)

    result = select_terms(SCOPE, score, BidirectionalStepwise())

    keys = [frozenset(t) for t in score.calls]
    assert len(keys) == len(set(keys))
    assert result.n_evaluated == len(keys)


def test_interaction_not_dropped_before_higher_order_term():
    # Dropping the main effect "a" would score best but the a:b interaction is still present
    scores = dict(SCORES)
    scores[frozenset({B, AB})] = -100.0
    scores[frozenset({A, AB})] = -100.0

    result = select_terms(SCOPE, table_score(scores), BackwardElimination())

    assert result.terms == (A,)


def test_ties_go_to_first_candidate():
    scores = {frozenset({A, B}): 5.0, frozenset({A}): 1.0, frozenset({B}): 1.0, frozenset(): 3.0}

    result = select_terms((A, B), table_score(scores), BackwardElimination())

    # Dropping "a" is scored first, so it wins the tie
    assert result.terms == (B,)


def test_explicit_start_and_max_steps():
    result = select_terms(SCOPE, table_score(SCORES), BidirectionalStepwise(), start=(A, B), max_steps=1)

    assert result.terms == (A,)
    assert len(result.history) == 2


def test_no_improving_move_keeps_start():
    scores = {frozenset({A, B, AB}): 0.0, frozenset({A, B}): 0.0}

    result = select_terms(SCOPE, table_score(scores), BackwardElimination())

    assert result.terms == SCOPE
    assert result.history[-1].action == "start"


def test_marginality_rules():
    abc = frozenset({"a", "b", "c"})
    ac = frozenset({"a", "c"})
    bc = frozenset({"b", "c"})

    assert not is_droppable(A, (A, B, AB))
    assert is_droppable(AB, (A, B, AB))
    assert not is_addable(AB, (A,))
    assert is_addable(AB, (A, B))
    assert not is_addable(AB, (A, B, AB))
    assert not is_addable(abc, (A, B, frozenset({"c"}), AB, ac))
    assert is_addable(abc, (A, B, frozenset({"c"}), AB, ac, bc))
    assert is_addable(A, ())


def test_term_label_sorted():
    assert term_label(frozenset({"z", "a"})) == "a:z"


def test_get_strategy():
    assert isinstance(get_strategy("both"), BidirectionalStepwise)
    assert isinstance(get_strategy("forward"), ForwardSelection)
    with pytest.raises(ValueError, match="Unknown selection strategy"):
        get_strategy("sideways")

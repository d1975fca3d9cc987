"""Tests for the retrieval strategy table."""

import pytest

from paperchat.data.models import QueryType
from paperchat.retrieval.strategies import (
    ALL_BUCKETS,
    BALANCED_STRATEGY,
    STRATEGIES,
    get_strategy,
)


class TestStrategyTable:
    def test_every_query_type_has_a_strategy(self):
        for query_type in QueryType:
            assert query_type in STRATEGIES

    def test_methodology_entry(self):
        strategy = STRATEGIES[QueryType.METHODOLOGY]
        assert strategy.priority_order[:3] == ("methods", "experiments", "introduction")
        assert strategy.generation_params.temperature == 0.2

    def test_budgets_positive(self):
        for strategy in STRATEGIES.values():
            assert strategy.generation_params.max_content_units > 0
            assert strategy.generation_params.max_tokens > 0

    def test_table_is_read_only(self):
        with pytest.raises(TypeError):
            STRATEGIES[QueryType.SUMMARY] = BALANCED_STRATEGY

    def test_weights_are_read_only(self):
        with pytest.raises(TypeError):
            STRATEGIES[QueryType.SUMMARY].weights["abstract"] = 5.0

    def test_bucket_weight_absent_is_zero(self):
        assert STRATEGIES[QueryType.METHODOLOGY].bucket_weight("reference") == 0.0

    def test_priority_index(self):
        strategy = STRATEGIES[QueryType.METHODOLOGY]
        assert strategy.priority_index("methods") == 0
        assert strategy.priority_index("author") is None


class TestGetStrategy:
    def test_primary_only(self):
        assert get_strategy(QueryType.RESULTS) is STRATEGIES[QueryType.RESULTS]

    def test_accepts_string_values(self):
        assert get_strategy("comparison") is STRATEGIES[QueryType.COMPARISON]

    def test_unknown_type_falls_back_to_balanced(self):
        strategy = get_strategy("astrology")
        assert strategy is BALANCED_STRATEGY
        assert set(strategy.priority_order) == set(ALL_BUCKETS)
        assert len(set(strategy.weights.values())) == 1

    def test_none_falls_back_to_balanced(self):
        assert get_strategy(None) is BALANCED_STRATEGY

    def test_secondary_blends_buckets(self):
        strategy = get_strategy(QueryType.METHODOLOGY, QueryType.RESULTS, secondary_weight_factor=0.5)
        methodology = STRATEGIES[QueryType.METHODOLOGY]

        assert strategy.priority_order[: len(methodology.priority_order)] == methodology.priority_order
        assert "results" in strategy.priority_order
        assert strategy.bucket_weight("results") == pytest.approx(0.5)
        # Primary weights win when higher
        assert strategy.bucket_weight("methods") == 1.0
        assert strategy.generation_params == methodology.generation_params
        assert strategy.instructions == methodology.instructions

    def test_same_secondary_is_ignored(self):
        assert get_strategy(QueryType.SUMMARY, QueryType.SUMMARY) is STRATEGIES[QueryType.SUMMARY]

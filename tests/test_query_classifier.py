"""Tests for rule-based query classification."""

import pytest

from paperchat.config import ClassifierConfig
from paperchat.data.models import PaperMetadata, QueryType, Question
from paperchat.retrieval.query_classifier import QueryClassifier


@pytest.fixture
def classifier():
    return QueryClassifier()


def _classify(classifier, text, **kwargs):
    return classifier.classify(Question(raw_text=text, **kwargs))


class TestQueryClassifier:
    def test_methodology_question(self, classifier):
        profile = _classify(classifier, "What methodology did the authors use?")
        assert profile.primary_type == QueryType.METHODOLOGY
        assert profile.generation_params.temperature == 0.2
        assert profile.specific_references == ()

    def test_figure_reference(self, classifier):
        profile = _classify(classifier, "What does Figure 3 show?")
        assert profile.primary_type == QueryType.SPECIFIC_REFERENCE
        assert profile.specific_references == ("Figure 3",)

    def test_multiple_references_kept_in_order(self, classifier):
        profile = _classify(classifier, "How do Table 2 and Section 4.1 relate?")
        assert profile.specific_references == ("Table 2", "Section 4.1")

    def test_comparison(self, classifier):
        profile = _classify(classifier, "Compare the proposed model versus the baseline")
        assert profile.primary_type == QueryType.COMPARISON

    def test_summary(self, classifier):
        profile = _classify(classifier, "Can you summarize this paper?")
        assert profile.primary_type == QueryType.SUMMARY

    def test_results(self, classifier):
        profile = _classify(classifier, "What accuracy does the model achieve on the benchmark?")
        assert profile.primary_type == QueryType.RESULTS

    def test_technical_details(self, classifier):
        profile = _classify(classifier, "Which hyperparameters and loss function are used?")
        assert profile.primary_type == QueryType.TECHNICAL_DETAILS

    def test_secondary_type(self, classifier):
        profile = _classify(classifier, "How does the method compare to the baseline results?")
        assert profile.primary_type == QueryType.COMPARISON
        assert profile.secondary_type == QueryType.METHODOLOGY

    def test_unmatched_defaults_to_conceptual(self, classifier):
        profile = _classify(classifier, "Hello there")
        assert profile.primary_type == QueryType.CONCEPTUAL
        assert profile.secondary_type is None
        assert profile.specific_references == ()

    def test_empty_question_never_raises(self, classifier):
        profile = _classify(classifier, "")
        assert profile.primary_type == QueryType.CONCEPTUAL

    def test_deterministic(self, classifier):
        question = Question(raw_text="Why does Table 2 differ from Figure 4?", selected_excerpt="x = y")
        assert classifier.classify(question) == classifier.classify(question)

    def test_excerpt_math_nudges_technical(self, classifier):
        profile = _classify(
            classifier,
            "What does this mean?",
            selected_excerpt=r"L = \sum_i \log p(x_i)",
        )
        assert profile.primary_type == QueryType.TECHNICAL_DETAILS


class TestTieBreaking:
    def test_default_order(self):
        profile = _classify(QueryClassifier(), "Explain the results")
        assert profile.primary_type == QueryType.RESULTS
        assert profile.secondary_type == QueryType.CONCEPTUAL

    def test_configured_order(self):
        config = ClassifierConfig(tie_break_order=["conceptual", "results"])
        profile = _classify(QueryClassifier(config), "Explain the results")
        assert profile.primary_type == QueryType.CONCEPTUAL
        assert profile.secondary_type == QueryType.RESULTS

    def test_unknown_names_ignored(self):
        config = ClassifierConfig(tie_break_order=["nonsense", "summary"])
        profile = _classify(QueryClassifier(config), "Give me an overview")
        assert profile.primary_type == QueryType.SUMMARY


class TestAuthorContext:
    def test_authorship_question(self, classifier):
        assert _classify(classifier, "Who wrote this paper?").include_author_context

    def test_author_surname_from_metadata(self, classifier):
        metadata = PaperMetadata(paper_id="p1", title="Attention", authors=["Ashish Vaswani", "Noam Shazeer"])
        profile = classifier.classify(Question(raw_text="What did Vaswani propose?"), metadata)
        assert profile.include_author_context

    def test_no_author_context(self, classifier):
        assert not _classify(classifier, "What is attention?").include_author_context

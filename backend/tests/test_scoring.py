import sys
import os

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from errors import InvalidAnswer
from question_bank import free_response, multiple_choice
from scoring import (
    score_answer, score_free_response, score_multiple_choice, tokenize_answers, validate_answer,
)
import config


def capitals_question():
    return free_response("Name a European capital.", "paris", "london", "rome", "berlin")


# ---------------------------------------------------------------------------
# Tokenizing
# ---------------------------------------------------------------------------

class TestTokenize:
    def test_splits_on_newlines_commas_and_spaces(self):
        assert tokenize_answers("Paris, London\nRome   Berlin") == ["Paris", "London", "Rome", "Berlin"]

    def test_empty_tokens_dropped(self):
        assert tokenize_answers(",,\n  paris ,, \n") == ["paris"]

    def test_truncated_to_eight(self):
        text = " ".join(f"a{i}" for i in range(12))
        tokens = tokenize_answers(text)
        assert len(tokens) == config.MAX_FREE_RESPONSE_ANSWERS
        assert tokens[-1] == "a7"

    def test_list_items_split_like_strings(self):
        assert tokenize_answers(["  Paris, London ", "", "rome\noslo"]) == ["Paris", "London", "rome", "oslo"]

    def test_list_items_count_toward_eight_after_split(self):
        tokens = tokenize_answers(["a b c d", "e f g h", "i"])
        assert tokens == ["a", "b", "c", "d", "e", "f", "g", "h"]

    def test_non_string_items_rejected(self):
        with pytest.raises(InvalidAnswer):
            tokenize_answers(["paris", 3])

    def test_other_types_rejected(self):
        with pytest.raises(InvalidAnswer):
            tokenize_answers({"answer": "paris"})


# ---------------------------------------------------------------------------
# Free response
# ---------------------------------------------------------------------------

class TestFreeResponse:
    def test_case_insensitive_dedup(self):
        """'Paris' and 'paris' credit the same acceptable answer only once."""
        q = capitals_question()
        assert score_free_response(q, ["Paris", "paris", "London", "Rome"]) == 3

    def test_all_correct(self):
        assert score_free_response(capitals_question(), "berlin rome london paris") == 4

    def test_none_correct(self):
        assert score_free_response(capitals_question(), ["madrid", "lisbon"]) == 0

    def test_whitespace_trimmed(self):
        assert score_free_response(capitals_question(), ["  PARIS  "]) == 1

    def test_only_first_eight_tokens_count(self):
        answers = [f"wrong{i}" for i in range(8)] + ["paris"]
        assert score_free_response(capitals_question(), answers) == 0

    def test_answer_key_is_case_insensitive_too(self):
        q = free_response("Name a Beatle.", "John", "Paul")
        assert score_free_response(q, "john PAUL") == 2

    def test_synonyms_share_one_point(self):
        q = free_response("Name a Beatle.", ("john", "lennon"), ("paul", "mccartney"),
                          ("ringo", "starr"))
        assert score_free_response(q, ["John", "Lennon", "Ringo", "Starr"]) == 2
        assert score_free_response(q, "lennon mccartney starr") == 3

    def test_list_item_with_commas_scores(self):
        assert score_free_response(capitals_question(), ["Paris, London"]) == 2


# ---------------------------------------------------------------------------
# Multiple choice
# ---------------------------------------------------------------------------

class TestMultipleChoice:
    def setup_method(self):
        self.q = multiple_choice("Capital of France?", ["Paris", "Rome", "Madrid", "Berlin"], 0)

    def test_exact_match_scores_one(self):
        assert score_multiple_choice(self.q, "Paris") == 1

    def test_other_option_scores_zero(self):
        assert score_multiple_choice(self.q, "Rome") == 0

    def test_match_is_exact(self):
        assert score_multiple_choice(self.q, "paris") == 0

    def test_single_item_list_accepted(self):
        assert score_multiple_choice(self.q, ["Paris"]) == 1

    def test_multi_item_list_rejected(self):
        with pytest.raises(InvalidAnswer):
            score_multiple_choice(self.q, ["Paris", "Rome"])

    def test_dispatch_by_kind(self):
        assert score_answer(self.q, "Paris") == 1
        assert score_answer(capitals_question(), "paris rome") == 2


class TestValidateAnswer:
    def test_free_response_normalized_to_tokens(self):
        assert validate_answer(capitals_question(), "a, b") == ["a", "b"]

    def test_free_response_empty_rejected(self):
        with pytest.raises(InvalidAnswer):
            validate_answer(capitals_question(), " ,\n ")

    def test_multiple_choice_unwrapped(self):
        q = multiple_choice("Q?", ["A", "B"], 1)
        assert validate_answer(q, ["B"]) == "B"

    def test_multiple_choice_non_string_rejected(self):
        q = multiple_choice("Q?", ["A", "B"], 1)
        with pytest.raises(InvalidAnswer):
            validate_answer(q, 1)

from typing import List, Union
import re

import config
from errors import InvalidAnswer
from question_bank import Question

_SPLIT_RE = re.compile(r'[\n,\s]+')

Answer = Union[str, List[str]]


def tokenize_answers(answer: Answer) -> List[str]:
    """Normalize a free-response payload into at most 8 items.

    A string, and each item of a list, is split on runs of newlines, commas
    and whitespace. Empty items are dropped before truncating.
    """
    if isinstance(answer, str):
        items = [answer]
    elif isinstance(answer, list) and all(isinstance(a, str) for a in answer):
        items = answer
    else:
        raise InvalidAnswer("Answers must be a string or a list of strings")
    tokens = [t for item in items for t in _SPLIT_RE.split(item)]
    return [t for t in tokens if t][:config.MAX_FREE_RESPONSE_ANSWERS]


def score_free_response(question: Question, answer: Answer) -> int:
    """One point per acceptable answer named; synonyms share a single point."""
    submitted = {t.lower() for t in tokenize_answers(answer)}
    return sum(1 for group in question.answer_groups if group & submitted)


def _single_option(answer: Answer) -> str:
    if isinstance(answer, list) and len(answer) == 1:
        answer = answer[0]
    if not isinstance(answer, str):
        raise InvalidAnswer("Multiple-choice answer must be a single option")
    return answer


def score_multiple_choice(question: Question, answer: Answer) -> int:
    return 1 if _single_option(answer) == question.correct_option else 0


def score_answer(question: Question, answer: Answer) -> int:
    if question.kind == config.MODE_MULTIPLE_CHOICE:
        return score_multiple_choice(question, answer)
    return score_free_response(question, answer)


def validate_answer(question: Question, answer: Answer) -> Answer:
    """Reject malformed payloads before any state is touched.

    Returns the normalized answer that gets recorded for the round.
    """
    if question.kind == config.MODE_MULTIPLE_CHOICE:
        return _single_option(answer)
    tokens = tokenize_answers(answer)
    if not tokens:
        raise InvalidAnswer("Enter at least one answer")
    return tokens

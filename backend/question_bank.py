from dataclasses import dataclass, field
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple, Union
import json
import logging
import random
import re

import config
from errors import InsufficientQuestions, InvalidDifficulty, InvalidMode

logger = logging.getLogger(__name__)

MAX_PROMPT_LENGTH = 500
MAX_OPTION_LENGTH = 200


@dataclass(frozen=True)
class Question:
    prompt: str
    kind: str  # config.MODE_FREE_RESPONSE | config.MODE_MULTIPLE_CHOICE
    answer_key: Tuple[str, ...]  # acceptable answers; a single item for multiple choice
    options: Tuple[str, ...] = field(default_factory=tuple)
    # Free response: lowercased spellings per answer_key entry, credited once each
    answer_groups: Tuple[FrozenSet[str], ...] = field(default_factory=tuple)

    @property
    def correct_option(self) -> str:
        return self.answer_key[0]

    def public_view(self) -> dict:
        """What players may see while the round is open (no answer key)."""
        view: dict = {"question": self.prompt}
        if self.kind == config.MODE_MULTIPLE_CHOICE:
            view["options"] = list(self.options)
        else:
            view["maxAnswers"] = config.MAX_FREE_RESPONSE_ANSWERS
        return view


def free_response(prompt: str, *answers: Union[str, Sequence[str]]) -> Question:
    """Each answer is a string or a sequence of synonyms, the first being the canonical one."""
    answers = answers[:config.MAX_FREE_RESPONSE_ANSWERS]
    spellings = [(a,) if isinstance(a, str) else tuple(a) for a in answers]
    return Question(
        prompt,
        config.MODE_FREE_RESPONSE,
        tuple(s[0] for s in spellings),
        answer_groups=tuple(frozenset(x.strip().lower() for x in s) for s in spellings),
    )


def multiple_choice(prompt: str, options: List[str], answer_index: int) -> Question:
    return Question(prompt, config.MODE_MULTIPLE_CHOICE, (options[answer_index],), tuple(options))


DEFAULT_QUESTIONS: Dict[str, Dict[str, List[Question]]] = {
    config.MODE_FREE_RESPONSE: {
        "easy": [
            free_response("Name a primary color.", "red", "blue", "yellow"),
            free_response("Name a planet in our solar system.", "mercury", "venus", "earth", "mars",
                          "jupiter", "saturn", "uranus", "neptune"),
            free_response("Name a day of the week.", "monday", "tuesday", "wednesday", "thursday",
                          "friday", "saturday", "sunday"),
            free_response("Name a continent.", "africa", "antarctica", "asia",
                          ("australia", "oceania"), "europe", "america"),
            free_response("Name a farm animal.", "cow", "pig", "sheep", "goat", "horse",
                          "chicken", "duck", "donkey"),
            free_response("Name a season of the year.", "spring", "summer", ("autumn", "fall"), "winter"),
            free_response("Name a color of the rainbow.", "red", "orange", "yellow", "green",
                          "blue", "indigo", "violet"),
            free_response("Name a fruit that is usually red.", "apple", "strawberry", "cherry",
                          "raspberry", "watermelon", "pomegranate", "cranberry", "tomato"),
            free_response("Name a shape with straight sides.", "triangle", "square", "rectangle",
                          "pentagon", "hexagon", "octagon", "rhombus", "trapezoid"),
            free_response("Name a musical instrument with strings.", "guitar", "violin", "cello",
                          "harp", "banjo", "ukulele", "viola", "mandolin"),
        ],
        "medium": [
            free_response("Name a country that borders France.", "spain", "italy", "germany",
                          "belgium", "switzerland", "luxembourg", "andorra", "monaco"),
            free_response("Name a noble gas.", "helium", "neon", "argon", "krypton", "xenon",
                          "radon", "oganesson"),
            free_response("Name a Beatle.", ("john", "lennon"), ("paul", "mccartney"),
                          ("george", "harrison"), ("ringo", "starr")),
            free_response("Name an official language of Switzerland.", "german", "french",
                          "italian", "romansh"),
            free_response("Name a Great Lake.", "superior", "michigan", "huron", "erie", "ontario"),
            free_response("Name a capital city in Scandinavia.", "oslo", "stockholm", "copenhagen",
                          "helsinki", "reykjavik"),
            free_response("Name a country that uses the euro.", "france", "germany", "italy",
                          "spain", "portugal", "ireland", "austria", "netherlands"),
            free_response("Name a bone in the human arm.", "humerus", "radius", "ulna"),
            free_response("Name a programming language created before 1980.", "fortran", "lisp",
                          "cobol", "basic", "c", "pascal", "algol", "smalltalk"),
            free_response("Name a planet with rings.", "saturn", "jupiter", "uranus", "neptune"),
        ],
        "hard": [
            free_response("Name a country that borders Germany.", "denmark", "poland", "austria",
                          "switzerland", "france", "belgium", "netherlands", "czechia"),
            free_response("Name a moon of Jupiter.", "io", "europa", "ganymede", "callisto",
                          "amalthea", "himalia", "thebe", "elara"),
            free_response("Name a Shakespeare tragedy.", "hamlet", "macbeth", "othello", "lear",
                          "coriolanus", "titus", "antony", "romeo"),
            free_response("Name an element whose symbol is a single letter.", "hydrogen", "carbon",
                          "nitrogen", "oxygen", "fluorine", "phosphorus", "sulfur", "iodine"),
            free_response("Name a landlocked country in South America.", "bolivia", "paraguay"),
            free_response("Name a Brontë sister.", "charlotte", "emily", "anne"),
            free_response("Name a country crossed by the equator.", "ecuador", "colombia", "brazil",
                          "gabon", "congo", "uganda", "kenya", "indonesia"),
            free_response("Name a chess piece.", "king", "queen", "rook", "bishop", "knight", "pawn"),
            free_response("Name a wife of Henry VIII (surname).", "aragon", "boleyn", "seymour",
                          "cleves", "howard", "parr"),
            free_response("Name a Greek letter that is also a vowel sound in English.", "alpha",
                          "epsilon", "eta", "iota", "omicron", "upsilon", "omega"),
        ],
    },
    config.MODE_MULTIPLE_CHOICE: {
        "easy": [
            multiple_choice("How many legs does a spider have?", ["6", "8", "10", "12"], 1),
            multiple_choice("What is the capital of France?", ["Paris", "Rome", "Madrid", "Berlin"], 0),
            multiple_choice("Which planet is known as the Red Planet?",
                            ["Venus", "Jupiter", "Mars", "Mercury"], 2),
            multiple_choice("What do bees make?", ["Milk", "Honey", "Silk", "Wax paper"], 1),
            multiple_choice("How many days are in a week?", ["5", "6", "7", "8"], 2),
            multiple_choice("Which animal is the largest mammal?",
                            ["Elephant", "Blue whale", "Giraffe", "Hippo"], 1),
            multiple_choice("What color do you get by mixing blue and yellow?",
                            ["Green", "Purple", "Orange", "Brown"], 0),
            multiple_choice("Water freezes at how many degrees Celsius?", ["0", "10", "32", "100"], 0),
            multiple_choice("Which is a mammal?", ["Shark", "Dolphin", "Trout", "Octopus"], 1),
        ],
        "medium": [
            multiple_choice("Who painted the Mona Lisa?",
                            ["Michelangelo", "Raphael", "Leonardo da Vinci", "Donatello"], 2),
            multiple_choice("What is the chemical symbol for gold?", ["Go", "Gd", "Au", "Ag"], 2),
            multiple_choice("Which ocean is the largest?",
                            ["Atlantic", "Indian", "Arctic", "Pacific"], 3),
            multiple_choice("In which year did World War II end?", ["1943", "1945", "1947", "1950"], 1),
            multiple_choice("What is the square root of 144?", ["10", "11", "12", "14"], 2),
            multiple_choice("Which gas do plants absorb from the air?",
                            ["Oxygen", "Nitrogen", "Carbon dioxide", "Hydrogen"], 2),
            multiple_choice("What is the capital of Australia?",
                            ["Sydney", "Melbourne", "Canberra", "Perth"], 2),
            multiple_choice("How many sides does a hexagon have?", ["5", "6", "7", "8"], 1),
            multiple_choice("Which language has the most native speakers?",
                            ["English", "Spanish", "Hindi", "Mandarin Chinese"], 3),
        ],
        "hard": [
            multiple_choice("What is the smallest prime number greater than 100?",
                            ["101", "103", "107", "109"], 0),
            multiple_choice("Which element has atomic number 26?", ["Cobalt", "Iron", "Nickel", "Copper"], 1),
            multiple_choice("Who wrote 'One Hundred Years of Solitude'?",
                            ["Jorge Luis Borges", "Gabriel García Márquez", "Mario Vargas Llosa",
                             "Isabel Allende"], 1),
            multiple_choice("What is the capital of Kazakhstan?",
                            ["Almaty", "Astana", "Bishkek", "Tashkent"], 1),
            multiple_choice("In what year was the Treaty of Westphalia signed?",
                            ["1618", "1648", "1688", "1713"], 1),
            multiple_choice("Which composer wrote 'The Rite of Spring'?",
                            ["Debussy", "Ravel", "Stravinsky", "Prokofiev"], 2),
            multiple_choice("What is the longest bone in the human body?",
                            ["Tibia", "Humerus", "Femur", "Fibula"], 2),
            multiple_choice("Which mathematician proved the incompleteness theorems?",
                            ["Hilbert", "Gödel", "Turing", "Cantor"], 1),
            multiple_choice("What is the deepest point in the world's oceans?",
                            ["Tonga Trench", "Java Trench", "Challenger Deep", "Puerto Rico Trench"], 2),
        ],
    },
}


def _sanitize_text(text: str, limit: int) -> str:
    text = re.sub(r'<[^>]+>', '', str(text))
    text = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', text)
    return text.strip()[:limit]


def _parse_question(entry: dict, mode: str) -> Optional[Question]:
    """Build a Question from a JSON entry; None if the entry is unusable."""
    if not isinstance(entry, dict) or not entry.get("prompt"):
        return None
    prompt = _sanitize_text(entry["prompt"], MAX_PROMPT_LENGTH)
    if mode == config.MODE_MULTIPLE_CHOICE:
        options = entry.get("options")
        index = entry.get("answer_index")
        if not isinstance(options, list) or len(options) not in (2, 4):
            return None
        if not isinstance(index, int) or not (0 <= index < len(options)):
            return None
        return multiple_choice(prompt, [_sanitize_text(o, MAX_OPTION_LENGTH) for o in options], index)
    answers = entry.get("answers")
    if not isinstance(answers, list):
        return None
    # Each entry is one acceptable answer: a string or a list of synonyms
    groups = []
    seen = set()
    for answer in answers:
        spellings = [answer] if isinstance(answer, str) else answer
        if not isinstance(spellings, list):
            continue
        cleaned = [_sanitize_text(s, MAX_OPTION_LENGTH).lower() for s in spellings if isinstance(s, str)]
        cleaned = [s for s in dict.fromkeys(cleaned) if s and s not in seen]
        if cleaned:
            seen.update(cleaned)
            groups.append(tuple(cleaned))
    if not groups:
        return None
    return free_response(prompt, *groups)


def load_question_file(path: str) -> Dict[str, Dict[str, List[Question]]]:
    """Load pools from JSON shaped like {mode: {difficulty: [entry, ...]}}."""
    with open(path, encoding="utf-8") as fh:
        raw = json.load(fh)
    pools: Dict[str, Dict[str, List[Question]]] = {}
    for mode in config.VALID_MODES:
        pools[mode] = {}
        for difficulty in config.VALID_DIFFICULTIES:
            entries = raw.get(mode, {}).get(difficulty, [])
            parsed = [_parse_question(e, mode) for e in entries]
            skipped = sum(1 for q in parsed if q is None)
            if skipped:
                logger.warning("Skipped %d invalid %s/%s questions in %s", skipped, mode, difficulty, path)
            pools[mode][difficulty] = [q for q in parsed if q is not None]
    return pools


class QuestionBank:
    def __init__(self, pools: Optional[Dict[str, Dict[str, List[Question]]]] = None,
                 rng: Optional[random.Random] = None):
        self.pools = pools if pools is not None else DEFAULT_QUESTIONS
        self.rng = rng or random.Random()

    def draw(self, difficulty: str, count: int, mode: str = config.DEFAULT_MODE) -> List[Question]:
        if mode not in config.VALID_MODES:
            raise InvalidMode(f'Mode must be one of: {", ".join(config.VALID_MODES)}')
        if difficulty not in config.VALID_DIFFICULTIES:
            raise InvalidDifficulty(f'Difficulty must be one of: {", ".join(config.VALID_DIFFICULTIES)}')
        pool = self.pools.get(mode, {}).get(difficulty, [])
        if count > len(pool):
            raise InsufficientQuestions(
                f"Only {len(pool)} {difficulty} questions available, {count} requested"
            )
        return self.rng.sample(pool, count)


def _build_default_bank() -> QuestionBank:
    if config.QUESTION_BANK_FILE:
        logger.info("Loading question bank from %s", config.QUESTION_BANK_FILE)
        return QuestionBank(load_question_file(config.QUESTION_BANK_FILE))
    return QuestionBank()


question_bank = _build_default_bank()

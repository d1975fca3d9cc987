"""Locator parsing for explicit figure, table, equation, section and page references.

Locators are the human labels ("Figure 3", "Section 2.1", "Eq. (4)") that
users write in questions and that extraction attaches to content units.
Both sides are reduced to the same canonical key before comparison.
"""

import re

LABELS = {
    "figure": "Figure",
    "fig": "Figure",
    "figs": "Figure",
    "table": "Table",
    "tab": "Table",
    "equation": "Equation",
    "eq": "Equation",
    "eqn": "Equation",
    "section": "Section",
    "sec": "Section",
    "§": "Section",
    "page": "Page",
    "p": "Page",
    "pg": "Page",
}

# Label word, optional period, then a numeral or dotted numeral, optionally in parentheses
LOCATOR_PATTERN = re.compile(
    r"(?<![A-Za-z])(figures?|figs?|tables?|tab|equations?|eqn|eq|sections?|sec|§|pages?|pg|p)"
    r"\.?\s*\(?(\d+(?:\.\d+)*)\)?",
    re.IGNORECASE,
)


def _canonical_label(word: str) -> str:
    word = word.lower()
    if word not in LABELS and word.endswith("s"):
        word = word[:-1]
    return LABELS[word]


def extract_locators(text: str) -> list[str]:
    """Extract canonical locator labels from free text, in order of appearance.

    The single letter "p" only counts when written as "p." so that ordinary
    words ending a sentence are not mistaken for page references.
    """
    found: list[str] = []
    for match in LOCATOR_PATTERN.finditer(text or ""):
        word, number = match.group(1), match.group(2)
        if word.lower() == "p" and not match.group(0)[1:].startswith("."):
            continue
        label = f"{_canonical_label(word)} {number}"
        if label not in found:
            found.append(label)
    return found


def normalize_locator(locator: str) -> str:
    """Reduce a locator to its canonical comparison key.

    Recognized labels become "<label> <number>" in lowercase; anything else
    (bounding boxes, citation keys) is lowercased with whitespace collapsed.
    """
    text = (locator or "").strip()
    match = LOCATOR_PATTERN.fullmatch(text)
    if match:
        return f"{_canonical_label(match.group(1)).lower()} {match.group(2)}"
    return " ".join(text.lower().split())


def _split(locator: str) -> tuple[str, list[int]] | None:
    key = normalize_locator(locator)
    label, _, number = key.partition(" ")
    if not number or not re.fullmatch(r"\d+(?:\.\d+)*", number):
        return None
    return label, [int(part) for part in number.split(".")]


def locators_adjacent(a: str, b: str) -> bool:
    """Whether two locators name neighbouring items (e.g. Page 3 and Page 4)."""
    left, right = _split(a), _split(b)
    if left is None or right is None:
        return False
    (label_a, nums_a), (label_b, nums_b) = left, right
    if label_a != label_b or len(nums_a) != len(nums_b):
        return False
    return nums_a[:-1] == nums_b[:-1] and abs(nums_a[-1] - nums_b[-1]) == 1

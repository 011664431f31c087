"""Fast food chain detection by normalized whole-phrase name matching."""

import re
import unicodedata
from typing import Dict, Iterable, List, Optional, Set, Tuple

FAST_FOOD_TYPES: Set[str] = {"fast_food_restaurant", "meal_takeaway"}

FAST_FOOD_CHAINS: Tuple[str, ...] = (
    "McDonald's", "Burger King", "Wendy's", "Taco Bell", "KFC", "Popeyes", "Arby's",
    "Subway", "Sonic", "Jack in the Box", "Hardee's", "Carl's Jr", "Chick-fil-A",
    "Five Guys", "Checkers", "White Castle", "Del Taco", "Jimmy John's", "Raising Cane's",
    "In-N-Out", "Little Caesars", "Domino's", "Pizza Hut", "Dairy Queen", "QDOBA",
    "Jersey Mike's", "Wingstop", "Dunkin'", "Panera", "Potbelly", "Starbucks",
    "Panda Express", "Donuts",
)

CHAIN_ALIASES: Dict[str, Tuple[str, ...]] = {
    "McDonald's": ("mcdonalds", "mc donalds"),
    "KFC": ("kentucky fried chicken", "k f c"),
    "Chick-fil-A": ("chickfila", "chick fil a"),
    "Carl's Jr": ("carls jr", "carl's junior", "carls junior"),
    "Jimmy John's": ("jimmy johns",),
    "Raising Cane's": ("raising canes",),
    "In-N-Out": ("in n out", "innout"),
    "Dairy Queen": ("dq",),
}

_APOSTROPHES = re.compile(r"[‘’ʼ`´]")
_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_text(value: Optional[str]) -> str:
    """Case-fold, strip accents, turn punctuation into spaces, collapse whitespace."""
    if not value:
        return ""
    text = unicodedata.normalize("NFKD", str(value))
    text = "".join(ch for ch in text if not unicodedata.combining(ch)).lower()
    text = _APOSTROPHES.sub("'", text)
    text = text.replace("'", "")
    return _NON_ALNUM.sub(" ", text).strip()


def _build_phrases(chains: Iterable[str], aliases: Dict[str, Iterable[str]]) -> List[Tuple[str, str]]:
    phrases: Dict[str, str] = {}
    for chain in chains:
        phrases.setdefault(normalize_text(chain), chain)
        for alias in aliases.get(chain, ()):
            phrases.setdefault(normalize_text(alias), chain)
    # longest first so "jack in the box" wins over any shorter overlap
    return sorted(((p, c) for p, c in phrases.items() if p), key=lambda pc: (-len(pc[0]), pc[0]))


_PHRASES = _build_phrases(FAST_FOOD_CHAINS, CHAIN_ALIASES)


def match_fast_food_chain(name: Optional[str]) -> Optional[str]:
    """Canonical chain name when ``name`` contains a chain phrase as whole words."""
    normalized = normalize_text(name)
    if not normalized:
        return None
    padded = f" {normalized} "
    for phrase, chain in _PHRASES:
        if f" {phrase} " in padded:
            return chain
    return None


def is_fast_food(name: Optional[str], types: Iterable[str]) -> bool:
    if FAST_FOOD_TYPES.intersection(types or ()):
        return True
    return match_fast_food_chain(name) is not None

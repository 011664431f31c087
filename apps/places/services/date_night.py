"""Theme rules for the dateNight quick filter."""

import re
from typing import Iterable, Optional, Tuple

from apps.places.services.fast_food import FAST_FOOD_TYPES, match_fast_food_chain

_KID_NAME = re.compile(
    r"\b(kids?|kidz|children'?s?|birthday|trampoline|bounce|jump(ing)?\s*(park|zone)|"
    r"play\s*(place|land|zone|ground)|playground|toddlers?|chuck\s*e\.?\s*cheese)\b",
    re.IGNORECASE,
)

KID_ONLY_TYPES = {"playground", "child_care_agency", "preschool", "amusement_center", "indoor_playground"}
ADULT_SIGNAL_TYPES = {
    "bar", "night_club", "restaurant", "wine_bar", "cocktail_bar", "pub",
    "brewery", "bowling_alley", "movie_theater", "performing_arts_theater",
}


def date_night_reject(name: Optional[str], types: Iterable[str]) -> Tuple[bool, Optional[str]]:
    """(reject, why) for a candidate under the date-night theme."""
    type_set = set(types or ())
    if name and _KID_NAME.search(name):
        return True, "kidName"
    if type_set & KID_ONLY_TYPES and not type_set & ADULT_SIGNAL_TYPES:
        return True, "kidType"
    if type_set & FAST_FOOD_TYPES:
        return True, "fastFoodType"
    if match_fast_food_chain(name):
        return True, "fastFoodChain"
    return False, None

"""
Meal slots and food-preference classification
"""

from typing import List, Optional

MEAL_SLOTS = ("breakfast", "lunch", "snacks", "dinner", "icecream")
DEFAULT_MEAL = "breakfast"

SYNC_HOSTEL_DAY = "hostel_day"
SYNC_OTHER = "other"


def is_veg(food_preference: Optional[str]) -> bool:
    """'Veg', 'Pure veg' -> True; 'Non-Veg', 'non veg', blank -> False"""
    pref = (food_preference or "").lower()
    return "veg" in pref and "non" not in pref


def normalize_meal(meal: Optional[str]) -> Optional[str]:
    """Lowercase a meal name and map it onto a known slot, or None"""
    if meal is None:
        return None
    value = meal.strip().lower().replace(" ", "").replace("-", "").replace("_", "")
    return value if value in MEAL_SLOTS else None


def meals_for_sync(sub_type: Optional[str], meal_name: Optional[str] = None) -> List[str]:
    """Meals a participant is entitled to for an event's sync configuration"""
    if sub_type == SYNC_OTHER:
        meal = normalize_meal(meal_name)
        if meal:
            return [meal]
    return list(MEAL_SLOTS)

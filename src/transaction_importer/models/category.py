"""Fixed category taxonomy shared by standardization and categorization."""

import re
from enum import Enum
from typing import Optional

# Bumped whenever a label is added, removed, or renamed
TAXONOMY_VERSION = "1"


class StandardCategory(Enum):
    """Closed set of categories every output transaction must belong to."""

    FOOD_AND_DINING = "Food & Dining"
    TRANSPORTATION = "Transportation"
    HEALTHCARE = "Healthcare"
    ENTERTAINMENT = "Entertainment"
    SHOPPING = "Shopping"
    UTILITIES = "Utilities"
    EDUCATION = "Education"
    INSURANCE = "Insurance"
    PERSONAL_CARE = "Personal Care"
    GIFTS_AND_DONATIONS = "Gifts & Donations"
    BUSINESS_SERVICES = "Business Services"
    FEES_AND_CHARGES = "Fees & Charges"
    INCOME = "Income"
    HOUSING = "Housing"
    SAVINGS = "Savings"
    INVESTMENT = "Investment"
    TRAVEL = "Travel"
    OTHER = "Other"

    def __str__(self) -> str:
        return self.value


TAXONOMY_LABELS: list[str] = [c.value for c in StandardCategory]

DEFAULT_CATEGORY = StandardCategory.OTHER


def _label_key(label: str) -> str:
    key = label.strip().strip("\"'").lower()
    key = re.sub(r"\s+(and|&)\s+", " & ", key)
    return re.sub(r"\s+", " ", key)


_LABEL_LOOKUP: dict[str, StandardCategory] = {_label_key(c.value): c for c in StandardCategory}


def coerce_category(label: Optional[object]) -> Optional[StandardCategory]:
    """Map a label onto the taxonomy if it names a member exactly.

    Matching ignores case, surrounding quotes, repeated whitespace, and
    treats "and" and "&" as equivalent ("food and dining" -> Food & Dining).

    Args:
        label: Candidate label, typically from a model response.

    Returns:
        The matching StandardCategory, or None.
    """
    if isinstance(label, StandardCategory):
        return label
    if not isinstance(label, str) or not label.strip():
        return None
    return _LABEL_LOOKUP.get(_label_key(label))


# Keyword table for heuristic fallbacks, evaluated in order.
# Substrings are matched against lowercased text.
KEYWORD_CATEGORIES: list[tuple[tuple[str, ...], StandardCategory]] = [
    (("income", "salary", "payroll", "paycheck", "wage", "dividend", "interest earned"),
     StandardCategory.INCOME),
    (("food", "dining", "restaurant", "grocer", "cafe", "coffee", "starbucks", "mcdonald", "pizza"),
     StandardCategory.FOOD_AND_DINING),
    (("transport", "uber", "lyft", "taxi", "transit", "fuel", "gas station", "parking"),
     StandardCategory.TRANSPORTATION),
    (("health", "medical", "doctor", "pharmacy", "dental", "hospital", "clinic"),
     StandardCategory.HEALTHCARE),
    (("entertain", "movie", "cinema", "netflix", "spotify", "music", "game", "hulu"),
     StandardCategory.ENTERTAINMENT),
    (("shop", "amazon", "store", "retail", "merchandise", "walmart", "target"),
     StandardCategory.SHOPPING),
    (("utilit", "electric", "water", "internet", "phone", "mobile", "cable"),
     StandardCategory.UTILITIES),
    (("educat", "tuition", "school", "university", "course"),
     StandardCategory.EDUCATION),
    (("insur",), StandardCategory.INSURANCE),
    (("personal", "salon", "barber", "beauty", "gym", "fitness"),
     StandardCategory.PERSONAL_CARE),
    (("gift", "donat", "charit"), StandardCategory.GIFTS_AND_DONATIONS),
    (("business", "office", "software", "professional", "consult"),
     StandardCategory.BUSINESS_SERVICES),
    (("fee", "charge", "penalty", "overdraft"), StandardCategory.FEES_AND_CHARGES),
    (("rent", "mortgage", "housing", "home"), StandardCategory.HOUSING),
    (("saving",), StandardCategory.SAVINGS),
    (("invest", "brokerage", "stock", "crypto", "retirement", "401k"),
     StandardCategory.INVESTMENT),
    (("travel", "hotel", "airline", "flight", "airbnb", "vacation", "lodging"),
     StandardCategory.TRAVEL),
]


def keyword_category(text: str) -> StandardCategory:
    """Categorize text by substring keyword matching.

    Used as the fallback when the inference service gives no usable answer.
    Exact taxonomy labels map to themselves before keywords are tried.

    Args:
        text: Raw category label or merchant name.

    Returns:
        The first matching category, or Other.
    """
    exact = coerce_category(text)
    if exact is not None:
        return exact

    lowered = text.lower()
    for keywords, category in KEYWORD_CATEGORIES:
        if any(kw in lowered for kw in keywords):
            return category
    return DEFAULT_CATEGORY

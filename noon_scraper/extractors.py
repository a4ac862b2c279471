import re
from decimal import Decimal, InvalidOperation

from noon_scraper.exceptions import ExtractionError

NBSP = "\u00a0"

_CASE_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_MODEL_NUMBER = re.compile(r"\bModel\s+Number\s*:\s*(\w+)\b")
_price_patterns = {}


def _clean(text):
    return (text or "").replace(NBSP, " ")


def _price_pattern(currency):
    pattern = _price_patterns.get(currency)
    if pattern is None:
        pattern = re.compile(r"\b%s\s+([\d,]+\.\d{2})\b" % re.escape(currency))
        _price_patterns[currency] = pattern
    return pattern


def extract_price(text, currency="AED"):
    """Return the amount following ``currency`` in ``text`` as a Decimal.

    "AED 1,234.56 incl. VAT" -> Decimal("1234.56"). Raises ExtractionError when
    no "<currency> <amount with two decimals>" token is present.
    """
    match = _price_pattern(currency).search(_clean(text))
    if not match:
        raise ExtractionError("price not found")
    try:
        return Decimal(match.group(1).replace(",", ""))
    except InvalidOperation as e:
        raise ExtractionError("failed to parse price %r" % match.group(1)) from e


def extract_category(text):
    """Return the most specific category of a breadcrumb blob.

    Breadcrumbs arrive glued together ("HomeKitchenAppliances"), so segments are
    split at each lowercase-to-uppercase transition and the last one is kept.
    """
    segments = _CASE_BOUNDARY.sub(r"\1,\2", _clean(text)).split(",")
    return segments[-1]


def extract_model_number(text):
    match = _MODEL_NUMBER.search(_clean(text))
    if not match:
        raise ExtractionError("model number not found")
    return match.group(1)


def parse_rating_count(text):
    # score occupies the first 3 characters, the review count is the rest
    count = (text or "")[3:]
    return int(count) if count.isdecimal() else None


def parse_rating(text):
    """Split a "4.6123" style rating blob into (score, count).

    Either half is None when it does not parse or the score is outside 0-5.
    """
    text = text or ""
    try:
        score = Decimal(text[:3])
    except InvalidOperation:
        score = None
    if score is not None and not (score.is_finite() and 0 <= score <= 5):
        score = None
    return score, parse_rating_count(text)

"""
Pricing policy — single source of truth for every credit/USD calculation.

Pure functions only: no I/O, no state. Other modules must import from here
and never redefine these constants.

Rounding: exact Decimal arithmetic, rounded half-up to the cent once per
output value. creator_share + platform_share may differ from credits_to_usd
by at most one cent; callers must not assert exact equality.
"""
from decimal import Decimal, ROUND_HALF_UP
from fractions import Fraction

from billing.errors import PriceNotFound, RateTableError

CENT = Decimal("0.01")

# 1 credit = $0.10 USD
CREDIT_TO_USD = Decimal("0.10")
# Creator receives 70% of gross value, platform keeps 30%
CREATOR_SHARE = Decimal("0.70")
PLATFORM_SHARE = Decimal("0.30")

# Call pricing (credits)
CALL_DURATIONS = (15, 30, 60, 90)
MIN_RATES = {
    15: 200,
    30: 280,
    60: 392,
    90: 412,
}
MAX_RATE = 900
# Audio is 70% of video price
AUDIO_MULTIPLIER = Decimal("0.70")
# A longer tier's per-minute price may not drop below this fraction of the previous tier's
PER_MINUTE_FLOOR_FRACTION = Decimal("0.70")

CALL_TYPE_VIDEO = "video"
CALL_TYPE_AUDIO = "audio"

# Fixed prices (credits) for message actions. Server-side only; never trust a client price.
PRICE_LIST = {
    "text_message": 5,
    "image_message": 10,
    "image_unlock": 10,
}

# Credit packs sold through Stripe: slug -> credits and price in cents
CREDIT_PACKS = {
    "starter": {"credits": 100, "price_cents": 1000},
    "popular": {"credits": 500, "price_cents": 5000},
    "premium": {"credits": 1000, "price_cents": 10000},
    "vip": {"credits": 2500, "price_cents": 25000},
}


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def _credits(credits) -> Decimal:
    if isinstance(credits, bool) or not isinstance(credits, int):
        raise TypeError("credits must be an integer")
    return Decimal(credits)


def credits_to_usd(credits: int) -> Decimal:
    """Gross USD value: credits x $0.10."""
    return round_cents(_credits(credits) * CREDIT_TO_USD)


def creator_share(credits: int) -> Decimal:
    """
    What the earner receives: credits x $0.10 x 0.70.

    Example: 200 credits -> $20 gross -> $14.00 to earner
    """
    return round_cents(_credits(credits) * CREDIT_TO_USD * CREATOR_SHARE)


def platform_share(credits: int) -> Decimal:
    """What the platform keeps: credits x $0.10 x 0.30."""
    return round_cents(_credits(credits) * CREDIT_TO_USD * PLATFORM_SHARE)


def calculate_all_pricing(credits: int) -> dict:
    return {
        "credits": credits,
        "gross_usd": credits_to_usd(credits),
        "creator_usd": creator_share(credits),
        "platform_usd": platform_share(credits),
    }


def earnings_match(credits: int, earner_amount) -> bool:
    """Allow one cent of tolerance for rounding."""
    return abs(creator_share(credits) - Decimal(str(earner_amount))) <= CENT


def validate_rate_for_duration(rate: int, duration: int):
    """
    Returns (valid, clamped_rate, error). Unknown durations are invalid.
    """
    if duration not in MIN_RATES:
        return False, rate, f"{duration} min is not a supported call duration"
    min_rate = MIN_RATES[duration]
    if rate < min_rate:
        return False, min_rate, f"{duration} min rate must be at least {min_rate} credits"
    if rate > MAX_RATE:
        return False, MAX_RATE, f"{duration} min rate cannot exceed {MAX_RATE} credits"
    return True, rate, None


def validate_rate_table(rates: dict, floor_fraction=PER_MINUTE_FLOOR_FRACTION) -> list:
    """
    Check the shape of a duration -> total price table.

    A longer duration may not cost less in total than a shorter one, and its
    per-minute price may not fall below floor_fraction of the previous tier's
    per-minute price. Bulk discounts above the floor are allowed.
    Returns a list of error strings (empty when valid).
    """
    errors = []
    floor = Fraction(str(floor_fraction))
    tiers = sorted(rates.items())
    for (prev_duration, prev_rate), (duration, rate) in zip(tiers, tiers[1:]):
        if rate < prev_rate:
            errors.append(
                f"{duration} min rate ({rate}) is lower than {prev_duration} min rate ({prev_rate})"
            )
            continue
        per_minute = Fraction(rate, duration)
        prev_per_minute = Fraction(prev_rate, prev_duration)
        if per_minute < floor * prev_per_minute:
            errors.append(
                f"{duration} min per-minute price drops below {int(floor * 100)}% "
                f"of the {prev_duration} min per-minute price"
            )
    return errors


def validate_call_rates(rates: dict) -> None:
    """Bounds per duration plus table shape. Raises RateTableError."""
    errors = []
    for duration in CALL_DURATIONS:
        if duration not in rates:
            errors.append(f"{duration} min rate is required")
            continue
        valid, _, error = validate_rate_for_duration(rates[duration], duration)
        if not valid:
            errors.append(error)
    errors.extend(validate_rate_table(rates))
    if errors:
        raise RateTableError(errors)


def derive_audio_rate(video_rate: int) -> int:
    """Audio price is derived from the video price, never stored."""
    return int((Decimal(video_rate) * AUDIO_MULTIPLIER).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def get_call_rate(video_rates: dict, call_type: str, duration: int) -> int:
    """Rate in credits for a call; missing rates fall back to the duration minimum."""
    if duration not in MIN_RATES:
        raise PriceNotFound(f"{duration} min is not a supported call duration.")
    if call_type not in (CALL_TYPE_VIDEO, CALL_TYPE_AUDIO):
        raise PriceNotFound(f"Unknown call type '{call_type}'.")
    video_rate = video_rates.get(duration) or MIN_RATES[duration]
    if call_type == CALL_TYPE_VIDEO:
        return video_rate
    return derive_audio_rate(video_rate)


def price_for(item: str) -> int:
    try:
        return PRICE_LIST[item]
    except KeyError:
        raise PriceNotFound(f"Unknown item '{item}'.")


def get_credit_pack(slug: str) -> dict:
    pack = CREDIT_PACKS.get(slug)
    if not pack:
        raise PriceNotFound("Credit pack not found.")
    return pack

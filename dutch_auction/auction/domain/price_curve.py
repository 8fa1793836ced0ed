"""
Dutch auction price decay curve

The price decays from the start price to the end price over the auction duration:

    progress = elapsed_ms / duration_ms
    price = start_price - (start_price - end_price) * progress ** 1.5

The exponent (> 1) makes the price decay slowly at the start of the auction and faster towards the end.

The computation is deterministic: the same inputs always produce the same Decimal, which makes it possible to
independently verify the price that an acceptance was frozen at given its elapsed time.
"""
from decimal import Context, Decimal, ROUND_HALF_EVEN

from dutch_auction.auction.domain.price import PRICE_PRECISION, Price

DECAY_EXPONENT = Decimal("1.5")

# prices are quantized to 18 decimal places, i.e., token base unit precision
PRICE_QUANTUM = Decimal(1).scaleb(-18)

# All arithmetic is done using this context instead of the thread local decimal context.
_CONTEXT = Context(prec=34, rounding=ROUND_HALF_EVEN)
# quantizing needs room for the integer digits plus the 18 fractional digits
_QUANTIZE_CONTEXT = Context(prec=PRICE_PRECISION, rounding=ROUND_HALF_EVEN)

_ZERO = Decimal(0)
_ONE = Decimal(1)


def progress(elapsed_ms: int, duration_ms: int) -> Decimal:
    """
    :return: elapsed / duration, clamped to [0, 1]
    """
    if elapsed_ms <= 0:
        return _ZERO
    if elapsed_ms >= duration_ms:
        return _ONE
    return _CONTEXT.divide(Decimal(elapsed_ms), Decimal(duration_ms))


def time_remaining_ms(elapsed_ms: int, duration_ms: int) -> int:
    return max(duration_ms - elapsed_ms, 0)


def price(
    elapsed_ms: int,
    start_price: Price,
    end_price: Price,
    duration_ms: int,
) -> Price:
    """
    Computes the auction price at the specified elapsed time.

    :param elapsed_ms: time elapsed since the auction started
    :param start_price: price when elapsed_ms <= 0
    :param end_price: price when elapsed_ms >= duration_ms
    :param duration_ms: auction duration, must be positive
    """
    if elapsed_ms <= 0:
        return start_price
    if elapsed_ms >= duration_ms:
        return end_price

    adjusted_progress = _CONTEXT.power(progress(elapsed_ms, duration_ms), DECAY_EXPONENT)
    decay = _CONTEXT.multiply(_CONTEXT.subtract(start_price, end_price), adjusted_progress)
    current_price = _CONTEXT.subtract(start_price, decay).quantize(
        PRICE_QUANTUM, context=_QUANTIZE_CONTEXT
    )
    # quantization must never push the price outside the auction's price range
    return min(max(current_price, end_price), start_price)

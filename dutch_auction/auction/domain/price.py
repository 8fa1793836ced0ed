"""
Price units

All auction prices are expressed in display units as `Decimal`, e.g., Decimal("86.46").
Callers that hold integer smallest-unit amounts (e.g., 18 decimal token amounts) must convert explicitly using
`from_base_units()`. Prices are never inferred from their magnitude.
"""
from decimal import Context, Decimal, InvalidOperation

from dutch_auction.auction.errors import InvalidPriceUnit

Price = Decimal

# token amounts are stored with 18 decimals
DEFAULT_DECIMALS = 18

# wide enough to scale any uint256 amount exactly
PRICE_PRECISION = 80
_CONTEXT = Context(prec=PRICE_PRECISION)

# a price must fit PRICE_PRECISION digits once quantized to DEFAULT_DECIMALS places
MAX_INTEGER_DIGITS = PRICE_PRECISION - DEFAULT_DECIMALS


def to_price(value: Decimal | int | str, order_id: str | None = None) -> Price:
    """
    Converts the value into a display unit price.

    :param value: Decimal, int, or a decimal formatted string
    :param order_id: included in the error for context
    :exception InvalidPriceUnit: if the value is a float, bool, or is not a finite decimal number,
                              or has more than MAX_INTEGER_DIGITS integer digits
    """
    # bool is an int subclass
    if isinstance(value, (bool, float)) or not isinstance(value, (Decimal, int, str)):
        raise InvalidPriceUnit(
            order_id, f"price must be a Decimal, int, or decimal str: {value!r}"
        )

    try:
        price = Decimal(value)
    except InvalidOperation as err:
        raise InvalidPriceUnit(order_id, f"invalid decimal price: {value!r}") from err

    if not price.is_finite():
        raise InvalidPriceUnit(order_id, f"price must be finite: {value!r}")
    if price.adjusted() >= MAX_INTEGER_DIGITS:
        raise InvalidPriceUnit(
            order_id, f"price has more than {MAX_INTEGER_DIGITS} integer digits: {value!r}"
        )
    return price


def from_base_units(amount: int, decimals: int = DEFAULT_DECIMALS) -> Price:
    """
    Converts an integer smallest-unit amount into a display unit price, e.g., 95 * 10**18 -> Decimal("95")

    :exception InvalidPriceUnit: if amount is not an int
    """
    if isinstance(amount, bool) or not isinstance(amount, int):
        raise InvalidPriceUnit(None, f"base unit amount must be an int: {amount!r}")
    return Decimal(amount).scaleb(-decimals, context=_CONTEXT)


def to_base_units(price: Price, decimals: int = DEFAULT_DECIMALS) -> int:
    """
    Converts a display unit price into an integer smallest-unit amount.

    :exception InvalidPriceUnit: if the price has more precision than `decimals` allows
    """
    scaled = to_price(price).scaleb(decimals, context=_CONTEXT)
    if scaled != scaled.to_integral_value():
        raise InvalidPriceUnit(
            None, f"price has more than {decimals} decimal places: {price}"
        )
    return int(scaled)

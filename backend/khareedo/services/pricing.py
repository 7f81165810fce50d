"""
Price parsing, discount maths and EMI.

Listing data carries prices as canonical rupee integers, as legacy strings
("₹1.5 Lakh", "2 Cr", "45,00,000") or not at all. Everything that compares,
sorts or discounts a price goes through normalize_price first. Parsing never
raises: unreadable prices degrade to 0 so browsing keeps working on
historically malformed rows.
"""

import math
import re
from dataclasses import dataclass
from typing import Optional, Union

LAKH = 100_000
CRORE = 10_000_000

NO_DISCOUNT = "00.00%"

_LEADING_FLOAT = re.compile(r"^[-+]?(\d+(\.\d*)?|\.\d+)")
_STRIP_CHARS = re.compile(r"[₹,\s]")
# "15 L", "15L", "15 l." - an "l" not glued to another letter at the end
_TRAILING_L = re.compile(r"(?<![a-z])l\.?$")

PriceInput = Union[int, float, str, None]


def normalize_price(value: PriceInput) -> int:
    """
    Parse any stored price representation into integer rupees.

    - falsy -> 0
    - numbers are returned as-is (floats rounded to whole rupees)
    - strings: currency symbol, commas and whitespace are stripped and the
      leading float is read; "lakh" or a trailing standalone "l" means x1e5,
      "cr"/"crore" means x1e7, otherwise the number is taken as rupees
    """
    if not value or isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            return 0
        return int(round(value))
    if not isinstance(value, str):
        return 0

    lowered = value.strip().lower()
    match = _LEADING_FLOAT.match(_STRIP_CHARS.sub("", lowered))
    if not match:
        return 0

    number = float(match.group(0))
    if "lakh" in lowered or _TRAILING_L.search(lowered):
        number *= LAKH
    elif "cr" in lowered:
        number *= CRORE

    return max(0, int(round(number)))


def parse_percentage(value) -> Optional[float]:
    """Read a cached "12.50%" string; None when absent or unreadable."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return float(value.strip().rstrip("%").strip())
    except ValueError:
        return None


def format_percentage(pct: float) -> str:
    if pct <= 0:
        return NO_DISCOUNT
    return f"{pct:.2f}%"


def format_amount(amount: Union[int, float]) -> str:
    """
    Display form of a rupee amount.

    Under 1 lakh: plain rupees with separators ("95,000").
    Under 1 crore: "X.XX Lakh". Otherwise "X.XX Crore".
    """
    amount = amount or 0
    if amount < LAKH:
        return f"{int(round(amount)):,}"
    if amount < CRORE:
        return f"{amount / LAKH:.2f} Lakh"
    return f"{amount / CRORE:.2f} Crore"


def format_price_short(amount: Union[int, float]) -> str:
    """Compact dashboard form: "₹ 1.25 Cr", "₹ 85.00 Lac"."""
    amount = amount or 0
    if amount >= CRORE:
        return f"₹ {amount / CRORE:.2f} Cr"
    if amount >= LAKH:
        return f"₹ {amount / LAKH:.2f} Lac"
    return f"₹ {int(round(amount)):,}"


# =============================================================================
# Discount
# =============================================================================

@dataclass
class Discount:
    amount: int
    percentage: str

    def to_dict(self) -> dict:
        return {
            "amount": self.amount,
            "percentage": self.percentage,
            "formattedAmount": format_amount(self.amount),
        }


def discount_percentage(developer_price: PriceInput, offer_price: PriceInput) -> str:
    """Percentage string cached on the property at write time."""
    dev = normalize_price(developer_price)
    offer = normalize_price(offer_price)
    if dev > 0 and offer > 0 and dev > offer:
        return format_percentage((dev - offer) / dev * 100)
    return NO_DISCOUNT


def calculate_discount(developer_price: PriceInput, offer_price: PriceInput,
                       cached_percentage: Optional[str] = None) -> Discount:
    """
    Discount amount and percentage for a listing.

    A cached percentage wins when present and the developer price is known;
    otherwise the discount is derived from the two prices.
    """
    dev = normalize_price(developer_price)
    offer = normalize_price(offer_price)

    pct = parse_percentage(cached_percentage)
    if pct is not None and dev > 0:
        return Discount(amount=int(round(dev * pct / 100)), percentage=format_percentage(pct))

    if dev > 0 and offer > 0 and dev > offer:
        amount = dev - offer
        return Discount(amount=amount, percentage=format_percentage(amount / dev * 100))

    return Discount(amount=0, percentage=NO_DISCOUNT)


def live_discount(prop) -> Discount:
    """
    Discount for a Property row as shown by read endpoints.

    Recomputed from the two prices whenever an offer price exists; the cached
    percentage is only consulted for rows that never stored an offer price.
    """
    if normalize_price(prop.offer_price) > 0:
        return calculate_discount(prop.developer_price, prop.offer_price)
    return calculate_discount(prop.developer_price, prop.offer_price, prop.discount_percentage)


# =============================================================================
# EMI
# =============================================================================

def calculate_emi(principal: PriceInput, annual_rate: float, months: int) -> dict:
    """
    Reducing-balance EMI.

    EMI = P * r * (1 + r)^n / ((1 + r)^n - 1) with r the monthly rate.
    A zero rate spreads the principal evenly.
    """
    loan = normalize_price(principal)
    if months <= 0:
        raise ValueError("Tenure must be at least one month")

    monthly_rate = (annual_rate or 0) / 12 / 100
    if monthly_rate == 0:
        emi = loan / months
    else:
        growth = (1 + monthly_rate) ** months
        emi = loan * monthly_rate * growth / (growth - 1)

    total_payment = emi * months
    return {
        "loanAmount": loan,
        "interestRate": annual_rate,
        "tenureMonths": months,
        "emi": round(emi),
        "totalInterest": round(total_payment - loan),
        "totalPayment": round(total_payment),
        "formattedEmi": format_amount(round(emi)),
    }

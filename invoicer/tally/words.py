"""Indian-English rendering of invoice amounts ("... HUNDRED AND EIGHTY ONLY")."""

from decimal import ROUND_HALF_UP, Decimal

_ONES = [""] + (
    "one two three four five six seven eight nine ten eleven twelve "
    "thirteen fourteen fifteen sixteen seventeen eighteen nineteen"
).split()
_TENS = ["", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety"]

# Indian grouping: crore (10^7), lakh (10^5), thousand (10^3)
_SCALES = [(10_000_000, "crore"), (100_000, "lakh"), (1_000, "thousand")]


def _below_thousand(n: int) -> str:
    if n < 20:
        return _ONES[n]
    if n < 100:
        tens, ones = divmod(n, 10)
        return _TENS[tens] + (f"-{_ONES[ones]}" if ones else "")
    hundreds, rest = divmod(n, 100)
    words = f"{_ONES[hundreds]} hundred"
    return words if rest == 0 else f"{words} and {_below_thousand(rest)}"


def _integer_words(n: int) -> str:
    parts: list[str] = []
    for scale, label in _SCALES:
        if n >= scale:
            count, n = divmod(n, scale)
            parts.append(f"{_integer_words(count)} {label}")
    if n:
        parts.append(_below_thousand(n))
    return " ".join(parts)


def amount_to_words(amount: Decimal) -> str:
    """Render a non-negative amount as upper-case words.

    Args:
        amount: Monetary amount; rounded half-up to paise first

    Returns:
        Words such as "ONE THOUSAND ONE HUNDRED AND EIGHTY AND FIFTY PAISE ONLY"
    """
    value = abs(amount).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    rupees = int(value)
    paise = int((value - rupees) * 100)

    if rupees == 0 and paise == 0:
        return "ZERO ONLY"

    words = _integer_words(rupees) if rupees else "zero"
    if paise:
        words = f"{words} and {_below_thousand(paise)} paise"
    return f"{words} only".upper()

"""Simplified GST calculation for sales invoices.

Same-state supplies split the rate evenly into CGST and SGST; inter-state
supplies carry a single IGST component. Amounts are left unrounded, callers
format them to two decimals when serializing.
"""

from decimal import Decimal

from invoicer.tally.schema import TaxBreakdown

_HUNDRED = Decimal("100")
_TWO = Decimal("2")


def is_same_state(buyer_state: str | None, seller_state: str | None) -> bool:
    """Case-insensitive state comparison; a blank code never matches."""
    buyer = (buyer_state or "").strip().upper()
    seller = (seller_state or "").strip().upper()
    return bool(buyer) and buyer == seller


def calculate_gst(
    subtotal: Decimal,
    buyer_state: str | None,
    seller_state: str,
    rate: Decimal,
) -> TaxBreakdown:
    """Compute GST on a subtotal.

    Args:
        subtotal: Sum of line amounts (non-negative)
        buyer_state: Customer's state code; blank is treated as inter-state
        seller_state: Selling company's state code
        rate: Total GST rate as a fraction (0.18 for 18%)

    Returns:
        TaxBreakdown with CGST+SGST for same-state supplies, IGST otherwise
    """
    if is_same_state(buyer_state, seller_state):
        half = rate / _TWO
        return TaxBreakdown(
            cgst_rate=half * _HUNDRED,
            cgst_amount=subtotal * half,
            sgst_rate=half * _HUNDRED,
            sgst_amount=subtotal * half,
        )

    return TaxBreakdown(igst_rate=rate * _HUNDRED, igst_amount=subtotal * rate)

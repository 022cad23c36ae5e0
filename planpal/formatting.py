from planpal.config import CURRENCY_SYMBOL
from planpal.ledger import MINOR_UNITS


def format_amount(minor_units: int) -> str:
    """Render minor units for display, e.g. 123450 -> '₹1,234.50'."""
    sign = "-" if minor_units < 0 else ""
    major, minor = divmod(abs(minor_units), MINOR_UNITS)
    return f"{sign}{CURRENCY_SYMBOL}{major:,}.{minor:02d}"


def format_handles(handles) -> str:
    return ", ".join(f"@{h}" for h in handles)

"""Formatting of minor-unit amounts for display."""


def format_minor(amount_minor: int, currency: str) -> str:
    """Return a string like «NPR 1,000.00» for 100000 minor units."""
    major, minor = divmod(abs(int(amount_minor)), 100)
    sign = "-" if amount_minor < 0 else ""
    return f"{currency} {sign}{major:,}.{minor:02d}"

# wellen/formatting.py
"""
German-locale presentation helpers.

These never feed back into computations: stored and transmitted values keep
their full precision.
"""
from datetime import date, datetime
from zoneinfo import ZoneInfo

from .config import TIMEZONE
from .timeline import to_local

WEEKDAYS_SHORT = ("Mo", "Di", "Mi", "Do", "Fr", "Sa", "So")
MONTHS_SHORT = ("Jan", "Feb", "Mär", "Apr", "Mai", "Jun", "Jul", "Aug", "Sep", "Okt", "Nov", "Dez")


def format_number(value: float, decimals: int = 2) -> str:
    """1234567.891 -> '1.234.567,89'"""
    text = f"{value:,.{decimals}f}"
    return text.replace(",", "\x00").replace(".", ",").replace("\x00", ".")


def format_currency(value: float) -> str:
    sign = "-" if value < 0 else ""
    return f"{sign}€{format_number(abs(value), 2)}"


def format_timestamp(moment: datetime, tz: ZoneInfo = TIMEZONE) -> str:
    """de-AT medium date + short time in the regional timezone: '01.06.2024, 23:58'"""
    local = to_local(moment, tz)
    return local.strftime("%d.%m.%Y, %H:%M")


def format_day_label(day: date) -> str:
    """'Sa, 1. Jun 2024'"""
    return f"{WEEKDAYS_SHORT[day.weekday()]}, {day.day}. {MONTHS_SHORT[day.month - 1]} {day.year}"

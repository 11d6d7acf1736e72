"""Next-due computation for recurring automations."""

import calendar
from datetime import datetime, timedelta, timezone

from autopilot.exceptions import UnsupportedFrequencyError
from autopilot.models import Frequency


def _add_months(moment: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def next_execution(current: float, frequency: Frequency) -> float:
    """Return the Unix time one ``frequency`` period after ``current`` (UTC calendar).

    Raises:
        UnsupportedFrequencyError: For ``once`` or an unknown frequency, which
            have no next occurrence.
    """
    moment = datetime.fromtimestamp(current, tz=timezone.utc)
    if frequency is Frequency.WEEKLY:
        moment = moment + timedelta(days=7)
    elif frequency is Frequency.MONTHLY:
        moment = _add_months(moment, 1)
    elif frequency is Frequency.YEARLY:
        moment = _add_months(moment, 12)
    else:
        raise UnsupportedFrequencyError(f"Unsupported frequency: {frequency}")
    return moment.timestamp()

"""Five-field cron expression -> Celery ``crontab``."""

from celery.schedules import ParseException, crontab


class InvalidScheduleError(ValueError):
    pass


def parse_cron_schedule(expression: str) -> crontab:
    """Parse "minute hour day-of-month month day-of-week" (UTC)."""
    fields = (expression or "").split()
    if len(fields) != 5:
        raise InvalidScheduleError(f"Invalid CRON_SCHEDULE {expression!r}: expected 5 fields, got {len(fields)}")
    minute, hour, day_of_month, month_of_year, day_of_week = fields
    try:
        return crontab(
            minute=minute,
            hour=hour,
            day_of_month=day_of_month,
            month_of_year=month_of_year,
            day_of_week=day_of_week,
        )
    except (ParseException, ValueError) as e:
        raise InvalidScheduleError(f"Invalid CRON_SCHEDULE {expression!r}: {e}") from e

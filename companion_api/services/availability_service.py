import logging
from collections import defaultdict

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from companion_api.core.exceptions import ValidationError
from companion_api.models.availability import AvailabilityWindow, AvailabilityWindowCreate, Weekday
from companion_api.services.audit_service import RequestMeta, record_template_change
from companion_api.services.conflict_service import intervals_overlap, lock_provider_schedule

logger = logging.getLogger(__name__)


def window_to_dict(w: AvailabilityWindow | AvailabilityWindowCreate) -> dict:
    """JSON-safe snapshot used in audit entries."""
    day = w.day_of_week.value if isinstance(w.day_of_week, Weekday) else w.day_of_week
    return {
        "day_of_week": day,
        "start_time": w.start_time.strftime("%H:%M:%S"),
        "end_time": w.end_time.strftime("%H:%M:%S"),
        "is_available": w.is_available,
        "services": list(w.services or []),
    }


def validate_windows(windows: list[AvailabilityWindowCreate]) -> None:
    """Reject inverted windows and overlaps within a weekday. Raises ValidationError."""
    by_day: dict[Weekday, list[AvailabilityWindowCreate]] = defaultdict(list)
    for w in windows:
        if w.start_time >= w.end_time:
            raise ValidationError(
                f"Window on {w.day_of_week.value} must end after it starts "
                f"({w.start_time:%H:%M}-{w.end_time:%H:%M})"
            )
        by_day[w.day_of_week].append(w)
    for day, day_windows in by_day.items():
        ordered = sorted(day_windows, key=lambda w: w.start_time)
        for prev, cur in zip(ordered, ordered[1:]):
            if intervals_overlap(prev.start_time, prev.end_time, cur.start_time, cur.end_time):
                raise ValidationError(
                    f"Overlapping windows on {day.value}: "
                    f"{prev.start_time:%H:%M}-{prev.end_time:%H:%M} and "
                    f"{cur.start_time:%H:%M}-{cur.end_time:%H:%M}"
                )


async def get_windows(
    session: AsyncSession,
    provider_id: int,
    day: Weekday | None = None,
    available_only: bool = False,
) -> list[AvailabilityWindow]:
    q = select(AvailabilityWindow).where(AvailabilityWindow.provider_id == provider_id)
    if day is not None:
        q = q.where(AvailabilityWindow.day_of_week == day.value)
    if available_only:
        q = q.where(AvailabilityWindow.is_available == True)  # noqa: E712
    q = q.order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time)
    result = await session.execute(q)
    return list(result.scalars().all())


async def set_weekly_template(
    session: AsyncSession,
    provider_id: int,
    windows: list[AvailabilityWindowCreate],
    actor_id: int,
    replace_days: list[Weekday] | None = None,
    meta: RequestMeta | None = None,
) -> list[AvailabilityWindow]:
    """Replace the provider's windows for the affected weekdays in one transaction.

    Affected weekdays are ``replace_days`` when given (so a day can be cleared
    by listing it with no windows), otherwise the weekdays present in
    ``windows``. Every window must belong to an affected day.
    """
    validate_windows(windows)
    days = set(replace_days) if replace_days is not None else {w.day_of_week for w in windows}
    stray = {w.day_of_week for w in windows} - days
    if stray:
        raise ValidationError(
            "Windows given for days not being replaced: " + ", ".join(sorted(d.value for d in stray))
        )
    if not days:
        raise ValidationError("No weekdays to update")
    day_values = [d.value for d in days]

    await lock_provider_schedule(session, provider_id)
    result = await session.execute(
        select(AvailabilityWindow)
        .where(
            AvailabilityWindow.provider_id == provider_id,
            AvailabilityWindow.day_of_week.in_(day_values),
        )
        .order_by(AvailabilityWindow.day_of_week, AvailabilityWindow.start_time)
    )
    old = [window_to_dict(w) for w in result.scalars().all()]

    await session.execute(
        delete(AvailabilityWindow).where(
            AvailabilityWindow.provider_id == provider_id,
            AvailabilityWindow.day_of_week.in_(day_values),
        )
    )
    created: list[AvailabilityWindow] = []
    for w in sorted(windows, key=lambda w: (w.day_of_week.value, w.start_time)):
        row = AvailabilityWindow(
            provider_id=provider_id,
            day_of_week=w.day_of_week.value,
            start_time=w.start_time,
            end_time=w.end_time,
            is_available=w.is_available,
            services=list(w.services),
        )
        session.add(row)
        created.append(row)
    await session.flush()

    await record_template_change(
        session,
        provider_id,
        actor_id,
        old_windows=old,
        new_windows=[window_to_dict(w) for w in created],
        meta=meta,
    )
    logger.info(
        "Availability replaced for provider %s: days=%s windows=%d",
        provider_id,
        sorted(day_values),
        len(created),
    )
    return created

"""Booking creation, lifecycle transitions, payment sub-status and listings."""

from datetime import datetime, time, timedelta

import pytest

from companion_api.core.exceptions import (
    AuthorizationError,
    ConflictError,
    IllegalTransitionError,
    NotFoundError,
    ValidationError,
)
from companion_api.models import (
    AuditAction,
    BookingCreate,
    BookingStatus,
    PaymentStatus,
    Role,
    ServiceCategory,
    Weekday,
)
from companion_api.services import booking_service
from companion_api.services.audit_service import list_entries
from companion_api.services.booking_service import (
    BOOKING_TRANSITIONS,
    booking_total,
    complete_finished_bookings,
    create_booking,
    duration_hours,
    get_booking_for_actor,
    list_bookings_for_user,
    list_pending_for_provider,
    list_provider_bookings_in_range,
    transition_booking,
    update_payment_status,
)
from tests.conftest import MONDAY, NEXT_MONDAY, NOW, TUESDAY, add_window


@pytest.fixture
async def schedule(session, companion):
    await add_window(session, companion, Weekday.MONDAY, time(9), time(17))
    return companion


async def book(session, client, provider, start=time(10), end=time(12), d=MONDAY, **kwargs):
    return await create_booking(session, client.id, provider.id, d, start, end, now=NOW, **kwargs)


class TestDuration:
    def test_decimal_hours(self):
        assert duration_hours(time(9), time(10, 30)) == 1.5
        assert duration_hours(time(9), time(10, 20)) == 1.33

    def test_total_is_hours_times_rate(self):
        assert booking_total(2, 35.0) == 70.0
        assert booking_total(1.5, 35.0) == 52.5


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_creates_pending_unpaid_booking(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()

        assert booking.id is not None
        assert booking.status == BookingStatus.PENDING
        assert booking.payment_status == PaymentStatus.UNPAID
        assert booking.duration_hours == 2.0
        assert booking.total_amount == 70.0

    @pytest.mark.asyncio
    async def test_uses_service_category_rate(self, session, schedule, client_user):
        category = ServiceCategory(name="Dinner date", base_price=50.0)
        session.add(category)
        await session.commit()

        booking = await book(session, client_user, schedule, data=BookingCreate(service_category_id=category.id))

        assert booking.total_amount == 100.0
        assert booking.service_category_id == category.id

    @pytest.mark.asyncio
    async def test_inactive_category_not_found(self, session, schedule, client_user):
        category = ServiceCategory(name="Retired", base_price=50.0, is_active=False)
        session.add(category)
        await session.commit()

        with pytest.raises(NotFoundError):
            await book(session, client_user, schedule, data=BookingCreate(service_category_id=category.id))

    @pytest.mark.asyncio
    async def test_self_booking_rejected(self, session, schedule):
        with pytest.raises(ValidationError, match="yourself"):
            await book(session, schedule, schedule)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "start,end",
        [
            (time(12), time(10)),
            (time(10), time(10)),
            (time(10), time(10, 30)),
            (time(6), time(19)),
        ],
    )
    async def test_invalid_window_rejected(self, session, schedule, client_user, start, end):
        with pytest.raises(ValidationError):
            await book(session, client_user, schedule, start=start, end=end)

    @pytest.mark.asyncio
    async def test_past_start_rejected(self, session, schedule, client_user):
        with pytest.raises(ValidationError, match="future"):
            await book(session, client_user, schedule, d=MONDAY - timedelta(days=7))

    @pytest.mark.asyncio
    async def test_provider_without_companion_role_not_found(self, session, schedule, client_user, outsider):
        with pytest.raises(NotFoundError, match="Companion not found"):
            await book(session, client_user, outsider)

    @pytest.mark.asyncio
    async def test_time_outside_availability_rejected(self, session, schedule, client_user):
        with pytest.raises(ValidationError, match="not available"):
            await book(session, client_user, schedule, d=TUESDAY)
        with pytest.raises(ValidationError, match="not available"):
            await book(session, client_user, schedule, start=time(16), end=time(18))

    @pytest.mark.asyncio
    async def test_overlap_conflicts(self, session, schedule, client_user, outsider):
        await book(session, client_user, schedule, start=time(10), end=time(12))
        await session.commit()

        with pytest.raises(ConflictError):
            await book(session, outsider, schedule, start=time(11), end=time(13))

    @pytest.mark.asyncio
    async def test_touching_windows_do_not_conflict(self, session, schedule, client_user, outsider):
        await book(session, client_user, schedule, start=time(10), end=time(12))
        await session.commit()

        second = await book(session, outsider, schedule, start=time(12), end=time(13))

        assert second.start_time == time(12)

    @pytest.mark.asyncio
    async def test_cancelled_booking_frees_slot(self, session, schedule, client_user, outsider):
        first = await book(session, client_user, schedule)
        await session.commit()
        await transition_booking(session, first.id, client_user.id, BookingStatus.CANCELLED, now=NOW)
        await session.commit()

        again = await book(session, outsider, schedule)

        assert again.id != first.id


class TestTransitions:
    def test_transition_table(self):
        assert BOOKING_TRANSITIONS[BookingStatus.PENDING] == {BookingStatus.CONFIRMED, BookingStatus.CANCELLED}
        for terminal in (BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW):
            assert BOOKING_TRANSITIONS[terminal] == frozenset()

    @pytest.mark.asyncio
    async def test_provider_confirms(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()

        booking = await transition_booking(session, booking.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)

        assert booking.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_client_cannot_confirm_and_attempt_is_audited(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()

        with pytest.raises(AuthorizationError):
            await transition_booking(session, booking.id, client_user.id, BookingStatus.CONFIRMED, now=NOW)

        entries = await list_entries(session, schedule.id, AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT)
        assert len(entries) == 1
        assert entries[0].actor_id == client_user.id

    @pytest.mark.asyncio
    async def test_outsider_cannot_touch_booking(self, session, schedule, client_user, outsider):
        booking = await book(session, client_user, schedule)
        await session.commit()

        with pytest.raises(AuthorizationError):
            await transition_booking(session, booking.id, outsider.id, BookingStatus.CANCELLED, now=NOW)
        with pytest.raises(AuthorizationError):
            await get_booking_for_actor(session, booking.id, outsider.id)

        entries = await list_entries(session, schedule.id, AuditAction.UNAUTHORIZED_ACCESS_ATTEMPT)
        assert [e.actor_id for e in entries] == [outsider.id, outsider.id]

    @pytest.mark.asyncio
    async def test_either_party_cancels_with_reason(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()
        await transition_booking(session, booking.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)

        booking = await transition_booking(
            session, booking.id, client_user.id, BookingStatus.CANCELLED, now=NOW, reason="Sick"
        )

        assert booking.status == BookingStatus.CANCELLED
        assert booking.cancellation_reason == "Sick"

    @pytest.mark.asyncio
    async def test_illegal_transitions(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()

        with pytest.raises(IllegalTransitionError):
            await transition_booking(session, booking.id, schedule.id, BookingStatus.COMPLETED, now=NOW)

        await transition_booking(session, booking.id, schedule.id, BookingStatus.CANCELLED, now=NOW)
        with pytest.raises(IllegalTransitionError):
            await transition_booking(session, booking.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)

    @pytest.mark.asyncio
    async def test_complete_only_after_end(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()
        await transition_booking(session, booking.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)

        with pytest.raises(IllegalTransitionError, match="after it ends"):
            await transition_booking(
                session, booking.id, schedule.id, BookingStatus.COMPLETED, now=datetime(2030, 1, 7, 11, 0)
            )
        booking = await transition_booking(
            session, booking.id, schedule.id, BookingStatus.COMPLETED, now=datetime(2030, 1, 7, 12, 0)
        )

        assert booking.status == BookingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_no_show_is_provider_only_after_start(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()
        await transition_booking(session, booking.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)

        with pytest.raises(IllegalTransitionError):
            await transition_booking(session, booking.id, schedule.id, BookingStatus.NO_SHOW, now=NOW)
        after_start = datetime(2030, 1, 7, 10, 30)
        with pytest.raises(AuthorizationError):
            await transition_booking(session, booking.id, client_user.id, BookingStatus.NO_SHOW, now=after_start)
        booking = await transition_booking(
            session, booking.id, schedule.id, BookingStatus.NO_SHOW, now=after_start
        )

        assert booking.status == BookingStatus.NO_SHOW

    @pytest.mark.asyncio
    async def test_sweep_completes_finished_confirmed_bookings(self, session, schedule, client_user):
        done = await book(session, client_user, schedule, start=time(9), end=time(10))
        later = await book(session, client_user, schedule, start=time(14), end=time(15))
        pending = await book(session, client_user, schedule, start=time(11), end=time(12))
        await session.commit()
        for b in (done, later):
            await transition_booking(session, b.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)
        await session.commit()

        count = await complete_finished_bookings(session, now=datetime(2030, 1, 7, 13, 0))

        assert count == 1
        assert (await get_booking_for_actor(session, done.id, client_user.id)).status == BookingStatus.COMPLETED
        assert (await get_booking_for_actor(session, later.id, client_user.id)).status == BookingStatus.CONFIRMED
        assert (await get_booking_for_actor(session, pending.id, client_user.id)).status == BookingStatus.PENDING

    @pytest.mark.asyncio
    async def test_sweep_skips_booking_cancelled_meanwhile(
        self, session, session_maker, schedule, client_user, monkeypatch
    ):
        early = await book(session, client_user, schedule, start=time(9), end=time(10))
        late = await book(session, client_user, schedule, start=time(11), end=time(12))
        await session.commit()
        for b in (early, late):
            await transition_booking(session, b.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)
        await session.commit()

        real_transition = booking_service.transition_booking

        async def cancel_elsewhere_first(s, booking_id, *args, **kwargs):
            if booking_id == early.id:
                async with session_maker() as other:
                    await real_transition(other, booking_id, client_user.id, BookingStatus.CANCELLED, now=NOW)
                    await other.commit()
            return await real_transition(s, booking_id, *args, **kwargs)

        monkeypatch.setattr(booking_service, "transition_booking", cancel_elsewhere_first)

        count = await complete_finished_bookings(session, now=datetime(2030, 1, 7, 13, 0))
        await session.commit()

        assert count == 1
        async with session_maker() as s:
            assert (await get_booking_for_actor(s, early.id, client_user.id)).status == BookingStatus.CANCELLED
            assert (await get_booking_for_actor(s, late.id, client_user.id)).status == BookingStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_unknown_booking_not_found(self, session, schedule):
        with pytest.raises(NotFoundError):
            await transition_booking(session, 424242, schedule.id, BookingStatus.CONFIRMED, now=NOW)


class TestPaymentStatus:
    @pytest.mark.asyncio
    async def test_paid_sets_paid_at(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()

        booking = await update_payment_status(
            session, booking.id, client_user.id, PaymentStatus.PAID, payment_method="card", now=NOW
        )

        assert booking.payment_status == PaymentStatus.PAID
        assert booking.payment_method == "card"
        assert booking.paid_at == NOW

    @pytest.mark.asyncio
    async def test_failed_can_retry(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()

        for status in (PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.PENDING, PaymentStatus.PAID):
            booking = await update_payment_status(session, booking.id, client_user.id, status, now=NOW)

        assert booking.payment_status == PaymentStatus.PAID

    @pytest.mark.asyncio
    async def test_illegal_payment_transition(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()
        await update_payment_status(session, booking.id, client_user.id, PaymentStatus.PAID, now=NOW)

        with pytest.raises(IllegalTransitionError):
            await update_payment_status(session, booking.id, client_user.id, PaymentStatus.PENDING, now=NOW)

    @pytest.mark.asyncio
    async def test_cancelled_booking_only_refunds(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()
        await update_payment_status(session, booking.id, client_user.id, PaymentStatus.PAID, now=NOW)
        await transition_booking(session, booking.id, client_user.id, BookingStatus.CANCELLED, now=NOW)

        booking = await update_payment_status(session, booking.id, schedule.id, PaymentStatus.REFUNDED, now=NOW)

        assert booking.payment_status == PaymentStatus.REFUNDED

    @pytest.mark.asyncio
    async def test_cancelled_unpaid_booking_cannot_be_paid(self, session, schedule, client_user):
        booking = await book(session, client_user, schedule)
        await session.commit()
        await transition_booking(session, booking.id, client_user.id, BookingStatus.CANCELLED, now=NOW)

        with pytest.raises(IllegalTransitionError):
            await update_payment_status(session, booking.id, client_user.id, PaymentStatus.PAID, now=NOW)


class TestListings:
    @pytest.mark.asyncio
    async def test_role_and_status_filters(self, session, schedule, client_user, other_companion):
        await add_window(session, other_companion, Weekday.MONDAY, time(9), time(17))
        as_client = await book(session, client_user, schedule)
        # The companion books another companion as a client
        as_provider_client = await book(session, schedule, other_companion)
        await session.commit()
        await transition_booking(session, as_client.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)
        await session.commit()

        all_mine = await list_bookings_for_user(session, schedule.id)
        as_companion = await list_bookings_for_user(session, schedule.id, role=Role.COMPANION)
        as_client_role = await list_bookings_for_user(session, schedule.id, role=Role.CLIENT)
        confirmed = await list_bookings_for_user(session, schedule.id, status=BookingStatus.CONFIRMED)

        assert {b.id for b in all_mine} == {as_client.id, as_provider_client.id}
        assert [b.id for b in as_companion] == [as_client.id]
        assert [b.id for b in as_client_role] == [as_provider_client.id]
        assert [b.id for b in confirmed] == [as_client.id]

    @pytest.mark.asyncio
    async def test_pagination(self, session, schedule, client_user):
        for hour in (9, 11, 13, 15):
            await book(session, client_user, schedule, start=time(hour), end=time(hour + 1))
        await session.commit()

        first = await list_bookings_for_user(session, client_user.id, limit=2)
        second = await list_bookings_for_user(session, client_user.id, limit=2, offset=2)

        assert [b.start_time for b in first] == [time(15), time(13)]
        assert [b.start_time for b in second] == [time(11), time(9)]

    @pytest.mark.asyncio
    async def test_pending_and_range(self, session, schedule, client_user):
        a = await book(session, client_user, schedule, start=time(9), end=time(10))
        b = await book(session, client_user, schedule, start=time(11), end=time(12))
        c = await book(session, client_user, schedule, start=time(9), end=time(10), d=NEXT_MONDAY)
        await session.commit()
        await transition_booking(session, b.id, schedule.id, BookingStatus.CANCELLED, now=NOW)
        await transition_booking(session, c.id, schedule.id, BookingStatus.CONFIRMED, now=NOW)
        await session.commit()

        pending = await list_pending_for_provider(session, schedule.id)
        in_range = await list_provider_bookings_in_range(session, schedule.id, MONDAY, NEXT_MONDAY)

        assert [x.id for x in pending] == [a.id]
        assert [x.id for x in in_range] == [a.id, c.id]

    @pytest.mark.asyncio
    async def test_inverted_range_rejected(self, session, schedule):
        with pytest.raises(ValidationError):
            await list_provider_bookings_in_range(session, schedule.id, NEXT_MONDAY, MONDAY)

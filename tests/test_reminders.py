"""
Tests for reminder rate limits and reminder delivery.
"""

import asyncio
from datetime import datetime, time, timedelta

import pytest

from conftest import NOW, TODAY, TOMORROW, booking_item
from vet_scheduling.engine import SchedulingEngine
from vet_scheduling.exceptions import GatewayException, NotFoundException, ValidationException
from vet_scheduling.models import Appointment
from vet_scheduling.services import PetInfo, ReminderChannel, ReminderService, ReminderThrottle
from vet_scheduling.services.reminders import parse_channels
from vet_scheduling.utils.config import SchedulingSettings


def new_appointment() -> Appointment:
    return Appointment(
        pet_id=1, category_id=1, appointment_at=datetime.combine(TOMORROW, time(9, 30))
    )


async def load(session_manager, appointment_id: int) -> Appointment:
    async with session_manager.get_session() as session:
        return await session.get(Appointment, appointment_id)


class TestParseChannels:
    """Test cases for reminder channel parsing."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("sms", [ReminderChannel.SMS]),
            ("Email", [ReminderChannel.EMAIL]),
            ("both", [ReminderChannel.SMS, ReminderChannel.EMAIL]),
            ("sms,email", [ReminderChannel.SMS, ReminderChannel.EMAIL]),
            (["email", "sms", "email"], [ReminderChannel.EMAIL, ReminderChannel.SMS]),
            (ReminderChannel.SMS, [ReminderChannel.SMS]),
        ],
    )
    def test_accepted_forms(self, value, expected):
        assert parse_channels(value) == expected

    @pytest.mark.parametrize("value", [None, "", "fax", []])
    def test_no_channel(self, value):
        with pytest.raises(ValidationException) as exc_info:
            parse_channels(value)

        assert exc_info.value.message == "Select at least one reminder channel."


class TestReminderThrottle:
    """Test cases for per-appointment reminder limits."""

    def test_sms_spacing(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()

        assert throttle.check_sms(appointment, NOW) is None
        throttle.record_sms(appointment, NOW)

        assert throttle.check_sms(appointment, NOW + timedelta(hours=5, minutes=59)) == (
            "SMS reminder can only be resent every 6 hours."
        )
        assert throttle.check_sms(appointment, NOW + timedelta(hours=6)) is None

    def test_sms_daily_limit(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()
        start = datetime.combine(TODAY, time(0, 0))

        for hours in (0, 6, 12):
            sent_at = start + timedelta(hours=hours)
            assert throttle.check_sms(appointment, sent_at) is None
            throttle.record_sms(appointment, sent_at)

        assert appointment.sms_sent_today == 3
        assert throttle.check_sms(appointment, start + timedelta(hours=18)) == (
            "SMS reminder limit reached (3 per day)."
        )

    def test_counters_roll_over(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()
        throttle.record_sms(appointment, NOW)
        throttle.record_email(appointment, NOW)

        assert throttle.roll_over(appointment, TODAY) is False
        assert throttle.roll_over(appointment, TOMORROW) is True
        assert appointment.sms_sent_today == 0
        assert appointment.email_sent_today == 0
        assert appointment.reminder_counter_date == TOMORROW

    def test_email_spacing(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()
        throttle.record_email(appointment, NOW)

        assert throttle.check_email(appointment, NOW + timedelta(minutes=59)) == (
            "Email reminder can only be resent every hour."
        )
        assert throttle.check_email(appointment, NOW + timedelta(minutes=61)) is None

    def test_email_daily_limit(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()
        for hour in range(5):
            throttle.record_email(appointment, NOW + timedelta(hours=hour))

        assert throttle.check_email(appointment, NOW + timedelta(hours=6)) == (
            "Email reminder limit reached (5 per day)."
        )

    def test_channels_are_independent(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()
        throttle.record_sms(appointment, NOW)

        assert throttle.check(appointment, ReminderChannel.SMS, NOW) is not None
        assert throttle.check(appointment, ReminderChannel.EMAIL, NOW) is None

    def test_limits_follow_settings(self):
        throttle = ReminderThrottle(SchedulingSettings(sms_min_interval_hours=2, sms_daily_limit=1))
        appointment = new_appointment()
        throttle.record_sms(appointment, NOW)

        assert throttle.check_sms(appointment, NOW + timedelta(hours=1)) == (
            "SMS reminder can only be resent every 2 hours."
        )
        assert throttle.check_sms(appointment, NOW + timedelta(hours=3)) == (
            "SMS reminder limit reached (1 per day)."
        )

    def test_release_after_claim(self):
        throttle = ReminderThrottle()
        appointment = new_appointment()
        earlier = NOW - timedelta(hours=7)
        throttle.record_sms(appointment, earlier)

        previous = throttle.claim(appointment, ReminderChannel.SMS, NOW)
        assert appointment.sms_sent_today == 2

        assert throttle.release(appointment, ReminderChannel.SMS, NOW, previous)
        assert appointment.sms_sent_today == 1
        assert appointment.last_sms_sent_at == earlier
        assert not throttle.release(appointment, ReminderChannel.SMS, NOW, previous)


class TestSendReminder:
    """Test cases for ReminderService.send_reminder."""

    @pytest.mark.asyncio
    async def test_both_channels(
        self, scheduler, reminders, staff, sms_gateway, email_gateway, session_manager, auditor
    ):
        created = await scheduler.create_appointment(booking_item(), staff)
        appointment_id = created.appointment.id

        result = await reminders.send_reminder(appointment_id, "both")

        assert result.success
        assert result.message == "SMS and Email reminders sent successfully."
        phone, send_at, message = sms_gateway.schedule_reminder.await_args.args
        assert phone == "09171234567"
        assert send_at == NOW + timedelta(minutes=1)
        assert message == (
            "Good day! This is Happy Paws Vet Clinic. "
            "Reminder for Bantay's Vaccination on Oct 20 2026 09:30 AM."
        )
        address, subject, plain, html = email_gateway.send_email.await_args.args
        assert address == "maria@example.com"
        assert subject == "Reminder: Bantay's Vaccination appointment"
        assert "<strong>Bantay's</strong>" in html

        stored = await load(session_manager, appointment_id)
        assert stored.sms_sent_today == 1
        assert stored.email_sent_today == 1
        assert stored.last_sms_sent_at == NOW
        assert stored.reminder_counter_date == TODAY
        assert auditor.entries[-1].action_type == "Send Reminder"
        assert auditor.entries[-1].performed_by == "System"

    @pytest.mark.asyncio
    async def test_second_sms_is_throttled(self, scheduler, reminders, staff, sms_gateway):
        created = await scheduler.create_appointment(booking_item(), staff)
        await reminders.send_reminder(created.appointment.id, "sms")

        result = await reminders.send_reminder(
            created.appointment.id, "sms", now=NOW + timedelta(hours=1)
        )

        assert not result.success
        assert result.message == "SMS reminder can only be resent every 6 hours."
        assert sms_gateway.schedule_reminder.await_count == 1

    @pytest.mark.asyncio
    async def test_email_resend_after_an_hour(self, scheduler, reminders, staff, email_gateway):
        created = await scheduler.create_appointment(booking_item(), staff)
        appointment_id = created.appointment.id
        await reminders.send_reminder(appointment_id, "email")

        early = await reminders.send_reminder(
            appointment_id, "email", now=NOW + timedelta(minutes=59)
        )
        late = await reminders.send_reminder(
            appointment_id, "email", now=NOW + timedelta(minutes=61)
        )

        assert early.email_error == "Email reminder can only be resent every hour."
        assert late.email_sent
        assert email_gateway.send_email.await_count == 2

    @pytest.mark.asyncio
    async def test_daily_limit_resets_next_day(
        self, scheduler, reminders, staff, session_manager
    ):
        created = await scheduler.create_appointment(
            booking_item(day=TOMORROW + timedelta(days=3)), staff
        )
        appointment_id = created.appointment.id
        for hours in (0, 6, 12):
            result = await reminders.send_reminder(
                appointment_id, "sms", now=NOW + timedelta(hours=hours)
            )
            assert result.sms_sent

        next_day = await reminders.send_reminder(
            appointment_id, "sms", now=NOW + timedelta(hours=18)
        )

        assert next_day.sms_sent
        stored = await load(session_manager, appointment_id)
        assert stored.sms_sent_today == 1
        assert stored.reminder_counter_date == TOMORROW

    @pytest.mark.asyncio
    async def test_partial_success(self, scheduler, reminders, staff, email_gateway):
        email_gateway.send_email.side_effect = GatewayException(
            "SMTP configuration incomplete", channel="email"
        )
        created = await scheduler.create_appointment(booking_item(), staff)

        result = await reminders.send_reminder(created.appointment.id, ["sms", "email"])

        assert result.sms_sent
        assert not result.email_sent
        assert result.message == "SMS sent, but Email failed (SMTP configuration incomplete)."

    @pytest.mark.asyncio
    async def test_rejected_sms(self, scheduler, reminders, staff, sms_gateway, session_manager):
        sms_gateway.schedule_reminder.return_value = False
        created = await scheduler.create_appointment(booking_item(), staff)

        result = await reminders.send_reminder(created.appointment.id, "sms")

        assert result.message == "SMS failed to send. Please check SMS credits."
        stored = await load(session_manager, created.appointment.id)
        assert stored.sms_sent_today == 0
        assert stored.last_sms_sent_at is None

    @pytest.mark.asyncio
    async def test_gateway_timeout(self, scheduler, reminders, staff, sms_gateway):
        async def hang(*args, **kwargs):
            await asyncio.sleep(1)
            return True

        sms_gateway.schedule_reminder.side_effect = hang
        reminders.settings.gateway_timeout_seconds = 0.01
        created = await scheduler.create_appointment(booking_item(), staff)

        result = await reminders.send_reminder(created.appointment.id, "both")

        assert result.sms_error == "SMS gateway timed out."
        assert result.email_sent
        assert result.message == "Email sent, but SMS failed (SMS gateway timed out.)."

    @pytest.mark.asyncio
    async def test_concurrent_sms_sends_only_once(
        self, scheduler, reminders, staff, sms_gateway, session_manager
    ):
        """Test two simultaneous sends cannot both pass the SMS limit."""

        async def slow_accept(*args, **kwargs):
            await asyncio.sleep(0.05)
            return True

        sms_gateway.schedule_reminder.side_effect = slow_accept
        created = await scheduler.create_appointment(booking_item(), staff)
        appointment_id = created.appointment.id

        first, second = await asyncio.gather(
            reminders.send_reminder(appointment_id, "sms"),
            reminders.send_reminder(appointment_id, "sms"),
        )

        assert [first.sms_sent, second.sms_sent].count(True) == 1
        rejected = second if first.sms_sent else first
        assert rejected.sms_error == "SMS reminder can only be resent every 6 hours."
        assert sms_gateway.schedule_reminder.await_count == 1
        stored = await load(session_manager, appointment_id)
        assert stored.sms_sent_today == 1

    @pytest.mark.asyncio
    async def test_concurrent_dispatches_respect_daily_limit(
        self, scheduler, reminders, staff, email_gateway, session_manager
    ):
        reminders.settings.email_min_interval_hours = 0
        created = await scheduler.create_appointment(booking_item(), staff)
        appointment_id = created.appointment.id

        tasks = [reminders.dispatch_reminder(appointment_id, "email") for _ in range(8)]
        results = await asyncio.gather(*tasks)

        assert sum(result.email_sent for result in results) == 5
        assert email_gateway.send_email.await_count == 5
        stored = await load(session_manager, appointment_id)
        assert stored.email_sent_today == 5

    @pytest.mark.asyncio
    async def test_failed_send_releases_claim(
        self, scheduler, reminders, staff, sms_gateway, session_manager
    ):
        sms_gateway.schedule_reminder.side_effect = [
            GatewayException("SMS gateway unreachable"),
            True,
        ]
        created = await scheduler.create_appointment(booking_item(), staff)
        appointment_id = created.appointment.id

        failed = await reminders.send_reminder(appointment_id, "sms")
        retried = await reminders.send_reminder(appointment_id, "sms")

        assert failed.sms_error == "SMS gateway unreachable"
        assert retried.sms_sent
        stored = await load(session_manager, appointment_id)
        assert stored.sms_sent_today == 1
        assert stored.last_sms_sent_at == NOW

    @pytest.mark.asyncio
    async def test_owner_without_email(self, scheduler, reminders, staff):
        created = await scheduler.create_appointment(booking_item(pet_id=3), staff)

        result = await reminders.send_reminder(created.appointment.id, "both")

        assert result.sms_sent
        assert result.email_error == "No email address available for Email reminder."

    @pytest.mark.asyncio
    async def test_invalid_owner_email(
        self, scheduler, reminders, staff, catalog, email_gateway, session_manager
    ):
        catalog.add_pet(
            PetInfo(id=4, name="Puti", owner_id=30, owner_phone="09170000000", owner_email="puti@")
        )
        created = await scheduler.create_appointment(booking_item(pet_id=4), staff)

        result = await reminders.send_reminder(created.appointment.id, "email")

        assert result.email_error == (
            "Invalid email address for Email reminder (Invalid email format)."
        )
        email_gateway.send_email.assert_not_awaited()
        stored = await load(session_manager, created.appointment.id)
        assert stored.email_sent_today == 0

    @pytest.mark.asyncio
    async def test_owner_email_is_normalized(
        self, scheduler, reminders, staff, catalog, email_gateway
    ):
        catalog.add_pet(
            PetInfo(id=4, name="Puti", owner_id=30, owner_email="  Ana.Reyes@Example.COM ")
        )
        created = await scheduler.create_appointment(booking_item(pet_id=4), staff)

        await reminders.send_reminder(created.appointment.id, "email")

        assert email_gateway.send_email.await_args.args[0] == "ana.reyes@example.com"

    @pytest.mark.asyncio
    async def test_unconfigured_gateways(self, scheduler, session_manager, catalog, staff):
        service = ReminderService(session_manager, catalog=catalog, clock=lambda: NOW)
        created = await scheduler.create_appointment(booking_item(), staff)

        result = await service.send_reminder(created.appointment.id, "both")

        assert not result.success
        assert result.sms_error == "SMS gateway is not configured."
        assert result.email_error == "Email gateway is not configured."
        assert result.message == "Reminder could not be sent using the selected options."

    @pytest.mark.asyncio
    async def test_unknown_appointment(self, reminders):
        with pytest.raises(NotFoundException):
            await reminders.send_reminder(999, "sms")

    @pytest.mark.asyncio
    async def test_dispatch_in_background(self, scheduler, reminders, staff):
        created = await scheduler.create_appointment(booking_item(), staff)

        task = reminders.dispatch_reminder(created.appointment.id, "email")
        result = await task

        assert result.email_sent
        await reminders.drain()


class TestBookingReminders:
    """Test cases for reminders queued after a staff booking."""

    @pytest.mark.asyncio
    async def test_queues_sms_and_confirmation_email(
        self, scheduler, reminders, staff, sms_gateway, email_gateway
    ):
        appointment_day = TODAY + timedelta(days=7)
        created = await scheduler.create_appointment(
            booking_item(day=appointment_day, time="14:00"), staff
        )

        task = reminders.schedule_booking_reminders([created.appointment.id])
        queued = await task

        assert queued == 2
        send_times = [call.args[1] for call in sms_gateway.schedule_reminder.await_args_list]
        assert send_times == [
            datetime.combine(appointment_day - timedelta(days=5), time(8, 0)),
            datetime.combine(appointment_day - timedelta(days=3), time(8, 0)),
        ]
        message = sms_gateway.schedule_reminder.await_args.args[2]
        assert message.startswith("Good Day, Maria Santos! This is Happy Paws Vet Clinic.")
        assert "at 02:00 PM" in message
        assert message.endswith("Service: Vaccination - Rabies.")
        assert email_gateway.send_email.await_args.args[1] == "Upcoming Appointment for Bantay"

    @pytest.mark.asyncio
    async def test_only_future_send_times(self, scheduler, reminders, staff, sms_gateway):
        created = await scheduler.create_appointment(
            booking_item(day=TODAY + timedelta(days=4)), staff
        )

        queued = await reminders.schedule_booking_reminders([created.appointment.id])

        assert queued == 1

    @pytest.mark.asyncio
    async def test_failures_are_logged(self, scheduler, reminders, staff, sms_gateway, caplog):
        sms_gateway.schedule_reminder.side_effect = GatewayException("SMS gateway unreachable")
        created = await scheduler.create_appointment(
            booking_item(day=TODAY + timedelta(days=7)), staff
        )

        queued = await reminders.schedule_booking_reminders([created.appointment.id])

        assert queued == 0
        assert "Reminder scheduling failed" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_address_skips_confirmation(
        self, scheduler, reminders, staff, catalog, sms_gateway, email_gateway, caplog
    ):
        catalog.add_pet(
            PetInfo(id=4, name="Puti", owner_id=30, owner_phone="09170000000", owner_email="puti@")
        )
        created = await scheduler.create_appointment(
            booking_item(pet_id=4, day=TODAY + timedelta(days=7)), staff
        )

        queued = await reminders.schedule_booking_reminders([created.appointment.id])

        assert queued == 2
        email_gateway.send_email.assert_not_awaited()
        assert "Skipping confirmation email" in caplog.text

    @pytest.mark.asyncio
    async def test_nothing_to_schedule(self, session_manager, reminders):
        assert reminders.schedule_booking_reminders([]) is None
        assert ReminderService(session_manager).schedule_booking_reminders([1]) is None

    @pytest.mark.asyncio
    async def test_staff_group_booking_schedules_reminders(
        self, session_manager, settings, catalog, clock, staff, sms_gateway, email_gateway
    ):
        engine = SchedulingEngine(
            session_manager,
            settings=settings,
            catalog=catalog,
            sms_gateway=sms_gateway,
            email_gateway=email_gateway,
            clock=clock,
        )

        await engine.create_group([booking_item(day=TODAY + timedelta(days=7))], staff)
        await engine.reminders.drain()

        assert sms_gateway.schedule_reminder.await_count == 2
        assert email_gateway.send_email.await_count == 1

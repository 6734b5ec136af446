"""
Appointment reminders and their rate limits.

Each appointment carries per-day counters for SMS and email reminders.
ReminderThrottle applies the clinic's limits to those counters and
ReminderService sends reminders through the gateways, persisting what was
actually delivered.
"""

import asyncio
import enum
import logging
import weakref
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Set

from ..exceptions import GatewayException, NotFoundException, ValidationException
from ..models import Appointment
from ..schemas import ReminderResult
from ..utils.config import SchedulingSettings
from ..utils.datetime_utils import reminder_send_times
from ..utils.validation import validate_email
from .base import BaseService
from .collaborators import OutboundEvents, PetInfo
from .context import SYSTEM_ACTOR
from .gateways import EmailGateway, SmsGateway

logger = logging.getLogger(__name__)

REMINDER_DATE_FORMAT = "%b %d %Y %I:%M %p"


class ReminderChannel(enum.Enum):
    SMS = "sms"
    EMAIL = "email"


def parse_channels(channels: Any) -> List[ReminderChannel]:
    """
    Accept ``"sms"``, ``"email"``, ``"both"``, ``"sms,email"`` or a list.

    Raises:
        ValidationException: If no known channel is named
    """
    if isinstance(channels, (str, ReminderChannel)):
        channels = [channels]
    parsed: List[ReminderChannel] = []
    for channel in channels or []:
        if isinstance(channel, ReminderChannel):
            names = [channel.value]
        else:
            names = [part.strip().lower() for part in str(channel).split(",")]
        for name in names:
            if name == "both":
                wanted = [ReminderChannel.SMS, ReminderChannel.EMAIL]
            elif name in ("sms", "email"):
                wanted = [ReminderChannel(name)]
            else:
                continue
            for item in wanted:
                if item not in parsed:
                    parsed.append(item)
    if not parsed:
        raise ValidationException(
            "Select at least one reminder channel.", field="channels", value=channels
        )
    return parsed


def _every(hours: float) -> str:
    return "hour" if hours == 1 else f"{hours:g} hours"


class ReminderThrottle:
    """
    Per-appointment reminder limits.

    Counters refer to ``reminder_counter_date`` and start over on the first
    attempt of a new day. Limits are checked per channel.
    """

    def __init__(self, settings: Optional[SchedulingSettings] = None):
        self.settings = settings or SchedulingSettings()

    def roll_over(self, appointment: Appointment, today: date) -> bool:
        """Reset the counters if they belong to another day; True if reset."""
        if appointment.reminder_counter_date == today:
            return False
        appointment.sms_sent_today = 0
        appointment.email_sent_today = 0
        appointment.reminder_counter_date = today
        return True

    def check_sms(self, appointment: Appointment, now: datetime) -> Optional[str]:
        """Return the rejection message, or None if an SMS may be sent."""
        interval = timedelta(hours=self.settings.sms_min_interval_hours)
        last = appointment.last_sms_sent_at
        if last is not None and last > now - interval:
            every = _every(self.settings.sms_min_interval_hours)
            return f"SMS reminder can only be resent every {every}."
        if (appointment.sms_sent_today or 0) >= self.settings.sms_daily_limit:
            return f"SMS reminder limit reached ({self.settings.sms_daily_limit} per day)."
        return None

    def check_email(self, appointment: Appointment, now: datetime) -> Optional[str]:
        """Return the rejection message, or None if an email may be sent."""
        interval = timedelta(hours=self.settings.email_min_interval_hours)
        last = appointment.last_email_sent_at
        if last is not None and last > now - interval:
            every = _every(self.settings.email_min_interval_hours)
            return f"Email reminder can only be resent every {every}."
        if (appointment.email_sent_today or 0) >= self.settings.email_daily_limit:
            return f"Email reminder limit reached ({self.settings.email_daily_limit} per day)."
        return None

    def check(
        self, appointment: Appointment, channel: ReminderChannel, now: datetime
    ) -> Optional[str]:
        if channel == ReminderChannel.SMS:
            return self.check_sms(appointment, now)
        return self.check_email(appointment, now)

    def record_sms(self, appointment: Appointment, now: datetime) -> None:
        self.roll_over(appointment, now.date())
        appointment.last_sms_sent_at = now
        appointment.sms_sent_today = (appointment.sms_sent_today or 0) + 1

    def record_email(self, appointment: Appointment, now: datetime) -> None:
        self.roll_over(appointment, now.date())
        appointment.last_email_sent_at = now
        appointment.email_sent_today = (appointment.email_sent_today or 0) + 1

    def claim(
        self, appointment: Appointment, channel: ReminderChannel, now: datetime
    ) -> Optional[datetime]:
        """
        Count a send before it is attempted.

        Returns the previous last-sent time so that :meth:`release` can undo
        the claim if the gateway does not deliver.
        """
        if channel == ReminderChannel.SMS:
            previous = appointment.last_sms_sent_at
            self.record_sms(appointment, now)
        else:
            previous = appointment.last_email_sent_at
            self.record_email(appointment, now)
        return previous

    def release(
        self,
        appointment: Appointment,
        channel: ReminderChannel,
        now: datetime,
        previous: Optional[datetime],
    ) -> bool:
        """Undo a claim made at ``now``; False if a later send replaced it."""
        if channel == ReminderChannel.SMS:
            if appointment.last_sms_sent_at != now:
                return False
            appointment.last_sms_sent_at = previous
            if appointment.reminder_counter_date == now.date() and appointment.sms_sent_today:
                appointment.sms_sent_today -= 1
            return True
        if appointment.last_email_sent_at != now:
            return False
        appointment.last_email_sent_at = previous
        if appointment.reminder_counter_date == now.date() and appointment.email_sent_today:
            appointment.email_sent_today -= 1
        return True


class ReminderService(BaseService):
    """Sends reminders through the SMS and email gateways."""

    def __init__(
        self,
        *args: Any,
        sms_gateway: Optional[SmsGateway] = None,
        email_gateway: Optional[EmailGateway] = None,
        throttle: Optional[ReminderThrottle] = None,
        **kwargs: Any,
    ):
        super().__init__(*args, **kwargs)
        self.sms_gateway = sms_gateway
        self.email_gateway = email_gateway
        self.throttle = throttle or ReminderThrottle(self.settings)
        self._tasks: Set[asyncio.Task] = set()
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _appointment_lock(self, appointment_id: int) -> asyncio.Lock:
        lock = self._locks.get(appointment_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[appointment_id] = lock
        return lock

    async def send_reminder(
        self,
        appointment_id: int,
        channels: Any,
        now: Optional[datetime] = None,
    ) -> ReminderResult:
        """
        Send a manual reminder for one appointment.

        The limits are checked and each allowed send is claimed (counted and
        stamped) in one transaction, serialised per appointment and with the
        row locked where the database supports it. The gateways are called
        outside of it with a timeout; claims whose send failed are released
        in a second transaction. Channels are independent: a rejected or
        failed SMS does not stop the email.

        Args:
            appointment_id: Appointment to remind about
            channels: "sms", "email", "both" or a list of channels
            now: Current clinic-local time (defaults to the service clock)

        Returns:
            What was sent and why anything was not

        Raises:
            NotFoundException: If the appointment does not exist
            ValidationException: If no known channel is requested
        """
        wanted = parse_channels(channels)
        now = now or self.now()
        errors = {}
        claims: Dict[ReminderChannel, Optional[datetime]] = {}

        lock = self._appointment_lock(appointment_id)
        async with lock:
            async with self.sessions.transaction_scope("reminder_claim") as session:
                appointment = await session.get(
                    Appointment, appointment_id, with_for_update=True, populate_existing=True
                )
                if appointment is None:
                    raise NotFoundException("Appointment", appointment_id)
                self.throttle.roll_over(appointment, now.date())
                for channel in wanted:
                    rejection = self.throttle.check(appointment, channel, now)
                    if rejection:
                        errors[channel] = rejection
                    else:
                        claims[channel] = self.throttle.claim(appointment, channel, now)
                pet_id = appointment.pet_id
                category_id = appointment.category_id
                appointment_at = appointment.appointment_at

        pet = await self.find_pet(pet_id)
        pet_name = pet.name if pet else "your pet"
        category = await self.category_name(category_id) if category_id else "service"
        when = appointment_at.strftime(REMINDER_DATE_FORMAT)
        sms_message = (
            f"Good day! This is {self.settings.clinic_name}. "
            f"Reminder for {pet_name}'s {category} on {when}."
        )

        sent: List[ReminderChannel] = []
        failed: List[ReminderChannel] = []
        for channel in claims:
            error = await self._deliver(channel, pet, pet_name, category, when, sms_message, now)
            if error:
                errors[channel] = error
                failed.append(channel)
            else:
                sent.append(channel)

        if failed:
            await self._release_claims(appointment_id, {c: claims[c] for c in failed}, now)

        if sent:
            events = OutboundEvents()
            events.audit(
                "Send Reminder",
                f"Sent {' and '.join(c.value.upper() for c in sent)} reminder for "
                f"appointment #{appointment_id}.",
                performed_by=SYSTEM_ACTOR,
            )
            await self.publish(events)

        for channel, error in errors.items():
            logger.warning(
                f"{channel.value} reminder for appointment {appointment_id} not sent: {error}"
            )

        return ReminderResult(
            appointment_id=appointment_id,
            sms_sent=ReminderChannel.SMS in sent,
            email_sent=ReminderChannel.EMAIL in sent,
            sms_error=errors.get(ReminderChannel.SMS),
            email_error=errors.get(ReminderChannel.EMAIL),
            message=self._summary(wanted, sent, errors),
        )

    async def _release_claims(
        self,
        appointment_id: int,
        claims: Dict[ReminderChannel, Optional[datetime]],
        now: datetime,
    ) -> None:
        async with self._appointment_lock(appointment_id):
            async with self.sessions.transaction_scope("reminder_release") as session:
                appointment = await session.get(
                    Appointment, appointment_id, with_for_update=True, populate_existing=True
                )
                if appointment is None:
                    return
                for channel, previous in claims.items():
                    self.throttle.release(appointment, channel, now, previous)

    async def _deliver(
        self,
        channel: ReminderChannel,
        pet: Optional[PetInfo],
        pet_name: str,
        category: str,
        when: str,
        sms_message: str,
        now: datetime,
    ) -> Optional[str]:
        """Hand one reminder to its gateway; returns an error message on failure."""
        timeout = self.settings.gateway_timeout_seconds
        if channel == ReminderChannel.SMS:
            phone = pet.owner_phone if pet else None
            if not phone:
                return "No phone number available for SMS reminder."
            if self.sms_gateway is None:
                return "SMS gateway is not configured."
            try:
                accepted = await asyncio.wait_for(
                    self.sms_gateway.schedule_reminder(
                        phone, now + timedelta(minutes=1), sms_message
                    ),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                return "SMS gateway timed out."
            except GatewayException as e:
                return e.message
            return None if accepted else "SMS failed to send. Please check SMS credits."

        address = pet.owner_email if pet else None
        if not address:
            return "No email address available for Email reminder."
        checked = validate_email(address)
        if not checked.is_valid:
            return f"Invalid email address for Email reminder ({checked.errors[0].message})."
        address = checked.value
        if self.email_gateway is None:
            return "Email gateway is not configured."
        owner_name = (pet.owner_name if pet else "") or "Pet Parent"
        html_body = (
            f"<p>Hi {owner_name},</p>"
            f"<p>This is <strong>{self.settings.clinic_name}</strong>.</p>"
            f"<p>Reminder for <strong>{pet_name}'s</strong> {category} appointment:</p>"
            f"<p><b>{when}</b></p>"
            f"<p>See you soon!</p><hr/>"
            f"<small>This is an automated reminder email.</small>"
        )
        try:
            await asyncio.wait_for(
                self.email_gateway.send_email(
                    address,
                    f"Reminder: {pet_name}'s {category} appointment",
                    sms_message,
                    html_body,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return "Email gateway timed out."
        except GatewayException as e:
            return e.message
        return None

    @staticmethod
    def _summary(wanted, sent, errors) -> str:
        sms, email = ReminderChannel.SMS, ReminderChannel.EMAIL
        if sms in sent and email in sent:
            return "SMS and Email reminders sent successfully."
        if sent == [sms]:
            if email in errors:
                return f"SMS sent, but Email failed ({errors[email]})."
            return "SMS reminder sent successfully."
        if sent == [email]:
            if sms in errors:
                return f"Email sent, but SMS failed ({errors[sms]})."
            return "Email reminder sent successfully."
        if len(wanted) == 1 and wanted[0] in errors:
            return errors[wanted[0]]
        return "Reminder could not be sent using the selected options."

    def _track(self, task: asyncio.Task) -> asyncio.Task:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"Background reminder task failed: {task.exception()}")

    def dispatch_reminder(self, appointment_id: int, channels: Any) -> asyncio.Task:
        """Run :meth:`send_reminder` in the background and return its task."""
        return self._track(
            asyncio.create_task(
                self.send_reminder(appointment_id, channels),
                name=f"reminder-{appointment_id}",
            )
        )

    def schedule_booking_reminders(self, appointment_ids: Iterable[int]) -> Optional[asyncio.Task]:
        """
        Queue SMS reminders ahead of newly booked appointments and send a
        confirmation email, in the background.

        Failures are logged, never raised to the booking caller.
        """
        ids = list(appointment_ids)
        if not ids or (self.sms_gateway is None and self.email_gateway is None):
            return None
        return self._track(
            asyncio.create_task(self._booking_reminders(ids), name="booking-reminders")
        )

    async def _booking_reminders(self, appointment_ids: List[int]) -> int:
        queued = 0
        for appointment_id in appointment_ids:
            try:
                queued += await self._booking_reminder(appointment_id)
            except Exception as e:
                logger.error(f"Reminder scheduling failed for appointment {appointment_id}: {e}")
        return queued

    async def _booking_reminder(self, appointment_id: int) -> int:
        async with self.sessions.get_session() as session:
            appointment = await session.get(Appointment, appointment_id)
            if appointment is None:
                return 0
            appointment_at = appointment.appointment_at
            category_id = appointment.category_id
            subtype_id = appointment.subtype_id
            pet_id = appointment.pet_id

        pet = await self.find_pet(pet_id)
        if pet is None or not pet.owner_phone:
            return 0

        category = await self.catalog.get_category(category_id) if category_id else None
        subtype = await self.catalog.get_subtype(subtype_id) if subtype_id else None
        message = (
            f"Good Day, {pet.owner_name or 'Pet Parent'}! This is {self.settings.clinic_name}. "
            f"You have an upcoming appointment on {appointment_at.strftime('%B %d, %Y (%A)')} "
            f"at {appointment_at.strftime('%I:%M %p')}. "
            f"Service: {category.name if category else 'General'} - "
            f"{subtype.name if subtype else 'Consultation'}."
        )
        timeout = self.settings.gateway_timeout_seconds

        queued = 0
        if self.sms_gateway is not None:
            for send_at in reminder_send_times(
                appointment_at,
                self.now(),
                list(self.settings.reminder_days_before),
                self.settings.reminder_send_time,
            ):
                if await asyncio.wait_for(
                    self.sms_gateway.schedule_reminder(pet.owner_phone, send_at, message),
                    timeout=timeout,
                ):
                    queued += 1
        checked = validate_email(pet.owner_email) if pet.owner_email else None
        if checked is not None and not checked.is_valid:
            logger.warning(
                f"Skipping confirmation email for appointment {appointment_id}: "
                f"{checked.errors[0].message}"
            )
        elif self.email_gateway is not None and checked is not None:
            await asyncio.wait_for(
                self.email_gateway.send_email(
                    checked.value, f"Upcoming Appointment for {pet.name}", message, message
                ),
                timeout=timeout,
            )
        return queued

    async def drain(self) -> None:
        """Wait for every background reminder task to finish."""
        while True:
            pending = [task for task in self._tasks if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

"""
Missed appointment sweep.

Appointments still open well after their timestamp are reclassified as
missed. The sweep runs on its own interval through MissedSweepScheduler,
and the staff management listing runs one pass before querying.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import select

from ..models import TERMINAL_STATUSES, Appointment
from ..schemas import SweepResult
from ..utils.datetime_utils import format_slot
from .base import BaseService
from .collaborators import OutboundEvents
from .context import SYSTEM_ACTOR

logger = logging.getLogger(__name__)


class MissedSweep(BaseService):
    """Marks overdue open appointments as missed."""

    async def run(self, now: Optional[datetime] = None) -> SweepResult:
        """
        Run one sweep pass.

        Any appointment whose timestamp plus the grace period lies before
        ``now`` and whose status is not terminal becomes MISSED. Running the
        pass again right away changes nothing.

        Args:
            now: Current clinic-local time (defaults to the service clock)

        Returns:
            Ids of the appointments marked missed
        """
        now = now or self.now()
        cutoff = now - timedelta(minutes=self.settings.missed_grace_minutes)
        events = OutboundEvents()
        marked: List[int] = []

        async with self.sessions.transaction_scope("missed_sweep") as session:
            result = await session.execute(
                select(Appointment)
                .where(
                    Appointment.appointment_at < cutoff,
                    Appointment.status.notin_(list(TERMINAL_STATUSES)),
                )
                .order_by(Appointment.appointment_at, Appointment.id)
            )
            for appointment in result.scalars():
                appointment.mark_missed()
                marked.append(appointment.id)

                pet_name = await self.pet_name(appointment.pet_id)
                display = format_slot(appointment.appointment_at)
                events.notify(
                    f"Appointment for {pet_name} scheduled on {display} was marked as missed.",
                    type="Appointment",
                    target_role="Staff",
                    redirect_url=f"/Staff/ViewPet/{appointment.pet_id}",
                )
                events.audit(
                    "Auto-Mark Missed",
                    f"Appointment #{appointment.id} for {pet_name} on {display} "
                    f"was automatically marked as missed.",
                    performed_by=SYSTEM_ACTOR,
                )

        await self.publish(events)
        if marked:
            logger.info(f"Missed sweep marked {len(marked)} appointment(s): {marked}")
        return SweepResult(ran_at=now, marked_ids=marked)


class MissedSweepScheduler:
    """
    Runs a MissedSweep every ``interval`` seconds on the event loop.

    A failing pass is logged and the loop carries on with the next one.
    """

    def __init__(self, sweep: MissedSweep, interval: Optional[float] = None):
        self.sweep = sweep
        self.interval = interval or sweep.settings.missed_sweep_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop on the running event loop."""
        if self.is_running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._loop(), name="missed-sweep")
        logger.info(f"Missed sweep scheduled every {self.interval:.0f}s")

    async def stop(self) -> None:
        """Stop the loop and wait for an in-flight pass to finish."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None
        logger.info("Missed sweep stopped")

    async def run_once(self) -> Optional[SweepResult]:
        """Run one pass, logging instead of raising on failure."""
        try:
            return await self.sweep.run()
        except Exception as e:
            logger.error(f"Missed sweep failed: {e}")
            return None

    async def _loop(self) -> None:
        while not self._stopping.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    async def __aenter__(self) -> "MissedSweepScheduler":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

"""Defence call lifecycle: creation, pledge matching, completion, expiry, restore.

State machine per channel::

    open ──match──▶ completed ──lock──▶ locked ──grace timer──▶ deleted
      └──────────────expiry timer──────────────────────────────▶ deleted

The :class:`DefenceCallManager` owns all mutable per-call state: the channel
registry, the submission ledger, the set of channels with a live listener and
the cancellable timers. Work for one channel is serialized behind a
per-channel ``asyncio.Lock``; different channels proceed independently.

Gateway failures never propagate out of a timer or a message handler. Creation
is the exception: a channel that cannot be created (or announced) turns into
``CallRejected("creation_failed")`` for the caller.

Usage:
    manager = DefenceCallManager(gateway=..., registry=..., ledger=..., timers=...,
                                 config_lookup=...)
    manager.load_state()
    await manager.restore_on_startup()
    outcome = await manager.create_call(guild_id, request, requester)
    await manager.on_message(channel_id, message)
"""

from __future__ import annotations

import asyncio
import logging
import math
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from bastion.core.deadlines import (
    REMINDER_SLOTS,
    is_valid_deadline,
    reminder_times,
    resolve_attack_time,
)
from bastion.core.directory import VillageDirectory
from bastion.core.errors import CallRejected, GatewayError
from bastion.core.gateway import ChatGateway, CreatedChannel, role_mentions
from bastion.core.ledger import SubmissionLedger
from bastion.core.pledge import Pledge, match_completion
from bastion.core.registry import ChannelRegistry
from bastion.core.timers import CallTimers
from bastion.models.defence import (
    CallRequest,
    ChannelMessage,
    Coordinates,
    DefenceCall,
    DefenceConfig,
    InboundMessage,
    Requester,
    Submission,
)

logger = logging.getLogger(__name__)

COMPLETION_GRACE = timedelta(hours=2)
STANDING_DURATION = timedelta(hours=24)
CROP_DURATION = timedelta(hours=2)

EXPIRY_TIMER = "expiry"
DELETION_TIMER = "deletion"

CALL_COMPLETED = (
    "✅ **Def call ended. Channel will be deleted in {hours} hours** / "
    "Ολοκληρώθηκε η κλήση άμυνας. Το κανάλι θα διαγραφεί σε {hours} ώρες."
)
CROP_COMPLETED = (
    "✅ **Crop request completed. Channel will be deleted in {hours} hours** / "
    "Ολοκληρώθηκε το αίτημα σιταριού. Το κανάλι θα διαγραφεί σε {hours} ώρες."
)
STANDING_COMPLETED = (
    "✅ **Standing def completed, will be deleted in {hours} hours** / "
    "Ολοκληρώθηκε η σταθερή άμυνα, θα διαγραφεί σε {hours} ώρες."
)
CALL_EXPIRED = "⏰ **Defence expired. Channel will now be deleted.**"
STANDING_EXPIRED = (
    "⏰ **Standing defence expired. Channel will now be deleted.** / "
    "Έληξε ο χρόνος για την σταθερή άμυνα. Το κανάλι θα διαγραφεί τώρα."
)

ConfigLookup = Callable[[str], Awaitable[DefenceConfig | None]]
MapLink = Callable[[int, int], str]


def reminder_timer(minutes_before: int) -> str:
    return f"reminder-{minutes_before}"


def channel_identifier(village_name: str | None, x: int, y: int) -> str:
    """Alphanumeric village name, or ``x_y`` when there is no usable name."""
    if village_name:
        cleaned = re.sub(r"[^a-zA-Z0-9]", "", village_name)
        if cleaned:
            return cleaned
    return f"{x}_{y}"


@dataclass(frozen=True)
class CallOutcome:
    """Result of a successful :meth:`DefenceCallManager.create_call`."""

    call: DefenceCall
    channel: CreatedChannel
    crop_call: DefenceCall | None = None


@dataclass(frozen=True)
class RestoreSummary:
    restored: int = 0
    removed: int = 0


class DefenceCallManager:
    """Creates defence calls and drives each one to deletion."""

    def __init__(
        self,
        *,
        gateway: ChatGateway,
        registry: ChannelRegistry,
        ledger: SubmissionLedger,
        timers: CallTimers,
        config_lookup: ConfigLookup,
        directory: VillageDirectory | None = None,
        map_link: MapLink | None = None,
        utc_offset_hours: int = 1,
        zone_label: str = "BST",
        restore_reminders: bool = False,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.gateway = gateway
        self.registry = registry
        self.ledger = ledger
        self.timers = timers
        self.directory = directory
        self._config_lookup = config_lookup
        self._map_link = map_link
        self.utc_offset_hours = utc_offset_hours
        self.zone_label = zone_label
        self.restore_reminders = restore_reminders
        self._clock = clock or (lambda: datetime.now(UTC))
        self._listening: set[str] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._loaded = False

    # --- Accessors ---

    def now(self) -> datetime:
        return self._clock()

    def tracks(self, channel_id: str) -> bool:
        return channel_id in self.registry

    def is_listening(self, channel_id: str) -> bool:
        return channel_id in self._listening

    def active_calls(self) -> list[DefenceCall]:
        return self.registry.all()

    def _lock(self, channel_id: str) -> asyncio.Lock:
        return self._locks.setdefault(channel_id, asyncio.Lock())

    def load_state(self) -> int:
        """Read the registry and ledger documents. Later calls are no-ops.

        Must run before the first mutation: every registry write rewrites the
        whole document from memory.
        """
        if not self._loaded:
            self.registry.load_all()
            self.ledger.load()
            self._loaded = True
        return len(self.registry)

    # --- Creation ---

    async def create_call(
        self,
        guild_id: str,
        request: CallRequest,
        requester: Requester,
    ) -> CallOutcome:
        """Open a defence call (and a crop call when ``request.crop`` is set).

        Raises:
            CallRejected: ``time_required``, ``invalid_time_format`` or
                ``config_missing`` before any side effect; ``creation_failed``
                when the platform could not create or announce the channel.
        """
        if not request.standing:
            if not request.time:
                raise CallRejected(
                    "time_required",
                    "Time is required for normal defence calls / "
                    "Απαιτείται ώρα για τις κανονικές κλήσεις άμυνας.",
                )
            if not is_valid_deadline(request.time):
                raise CallRejected(
                    "invalid_time_format",
                    f"Invalid time format. Please use HH:mm in {self.zone_label}.",
                )

        self.load_state()
        config = await self._config_lookup(guild_id)
        if config is None:
            raise CallRejected(
                "config_missing",
                "Defence call configuration not found. "
                "Please ask an administrator to set it up using `/config set`.",
            )

        now = self.now()
        attack_time = None
        if not request.standing and request.time:
            attack_time = resolve_attack_time(request.time, now, self.utc_offset_hours)
        date = (attack_time or now).date().isoformat()

        village = self.directory.find_village_at(request.x, request.y) if self.directory else None
        identifier = channel_identifier(
            village.village_name if village else None, request.x, request.y
        )
        prefix = "standing-def" if request.standing else "def"
        channel_name = f"{prefix}-{identifier}-{date}"

        announcement = self._call_announcement(request, config)
        channel = await self._open_channel(
            guild_id, channel_name, config.parent_category, config, announcement
        )

        if request.standing:
            expires_at = now + STANDING_DURATION
        else:
            expires_at = attack_time + COMPLETION_GRACE  # type: ignore[operator]

        call = DefenceCall(
            channel_id=channel.id,
            guild_id=guild_id,
            channel_name=channel.name,
            kind="standing" if request.standing else "normal",
            requested_amount=request.amount,
            coordinates=Coordinates(x=request.x, y=request.y),
            attack_time=attack_time,
            deadline_label=None if request.standing else request.time,
            created_at=now,
            expires_at=expires_at,
            view_roles=list(config.view_roles),
            ping_roles=list(config.ping_roles),
            requested_by=requester.user_id or requester.display_name,
            messages=[ChannelMessage(content=announcement, timestamp=now, origin="initial")],
        )
        async with self._lock(call.channel_id):
            self.registry.add(call)
            if attack_time is not None:
                self._schedule_reminders(call, now)
            self._listening.add(call.channel_id)
            self._schedule_expiry(call)

        logger.info(
            "defence_call_created channel=%s kind=%s amount=%d x=%d y=%d attack_time=%s",
            call.channel_id,
            call.kind,
            call.requested_amount,
            request.x,
            request.y,
            attack_time.isoformat() if attack_time else None,
        )
        await self._log_creation(config, request, requester)

        crop_call = None
        if request.crop:
            crop_call = await self._create_crop_call(
                guild_id, request, requester, config, identifier, date, now
            )
        return CallOutcome(call=call, channel=channel, crop_call=crop_call)

    async def _create_crop_call(
        self,
        guild_id: str,
        request: CallRequest,
        requester: Requester,
        config: DefenceConfig,
        identifier: str,
        date: str,
        now: datetime,
    ) -> DefenceCall | None:
        crop_amount = request.crop or 0
        announcement = (
            f"{role_mentions(config.ping_roles)} Crop request: **{crop_amount}** crop "
            f"at (**{request.x}**, **{request.y}**)"
        )
        if self._map_link:
            announcement += f"\n🌍 {self._map_link(request.x, request.y)}"
        try:
            channel = await self._open_channel(
                guild_id,
                f"crop-{identifier}-{date}",
                config.crop_category or config.parent_category,
                config,
                announcement,
            )
        except CallRejected:
            logger.warning("crop_call_creation_failed x=%d y=%d", request.x, request.y)
            return None

        call = DefenceCall(
            channel_id=channel.id,
            guild_id=guild_id,
            channel_name=channel.name,
            kind="crop",
            requested_amount=crop_amount,
            coordinates=Coordinates(x=request.x, y=request.y),
            created_at=now,
            expires_at=now + CROP_DURATION,
            view_roles=list(config.view_roles),
            ping_roles=list(config.ping_roles),
            requested_by=requester.user_id or requester.display_name,
            messages=[ChannelMessage(content=announcement, timestamp=now, origin="initial")],
        )
        async with self._lock(call.channel_id):
            self.registry.add(call)
            self._listening.add(call.channel_id)
            self._schedule_expiry(call)
        logger.info("crop_call_created channel=%s amount=%d", call.channel_id, crop_amount)
        return call

    async def _open_channel(
        self,
        guild_id: str,
        name: str,
        parent_id: str | None,
        config: DefenceConfig,
        announcement: str,
    ) -> CreatedChannel:
        """Create the channel and post its opening announcement."""
        try:
            channel = await self.gateway.create_channel(
                guild_id, name, parent_id=parent_id, view_roles=config.view_roles
            )
        except GatewayError as exc:
            logger.exception("defence_channel_create_failed name=%s", name)
            raise CallRejected(
                "creation_failed",
                "Failed to create the defence call channel. / "
                "Αποτυχία δημιουργίας καναλιού κλήσης άμυνας.",
            ) from exc

        try:
            await self.gateway.send_message(
                channel.id, announcement, mention_roles=config.ping_roles
            )
        except GatewayError as exc:
            logger.exception("defence_announcement_failed channel=%s", channel.id)
            await self._delete_channel_quietly(channel.id, "Defence call could not be announced")
            raise CallRejected(
                "creation_failed",
                "Failed to create the defence call channel. / "
                "Αποτυχία δημιουργίας καναλιού κλήσης άμυνας.",
            ) from exc
        return channel

    def _call_announcement(self, request: CallRequest, config: DefenceConfig) -> str:
        text = (
            f"{role_mentions(config.ping_roles)} Defence request: **{request.amount}** units "
            f"at (**{request.x}**, **{request.y}**)"
        )
        if not request.standing:
            text += (
                f"\n🕒 Attack time: **{request.time} {self.zone_label}** / "
                f"Ώρα επίθεσης: **{request.time} {self.zone_label}**"
            )
        if self._map_link:
            text += f"\n🌍 {self._map_link(request.x, request.y)}"
        return text

    async def _log_creation(
        self,
        config: DefenceConfig,
        request: CallRequest,
        requester: Requester,
    ) -> None:
        """Audit the request in the community's log channels (best-effort)."""
        where = f"({request.x}, {request.y})"
        if requester.source == "api":
            if request.standing:
                initiator_line = (
                    f"📢 **API Request** initiated a standing defence call for "
                    f"**{request.amount}** units at coordinates **{where}**"
                )
            else:
                initiator_line = (
                    f"📢 **API Request** initiated a defence call for **{request.amount}** "
                    f"units at coordinates **{where}** for **{request.time} {self.zone_label}**"
                )
        else:
            initiator_line = (
                f"Deff call/standing deff command was done by <@{requester.user_id}>"
            )
        if request.standing:
            log_line = f"Standing def to {where} {request.amount} units"
        else:
            log_line = (
                f"Defence to {where} {request.amount} units at {request.time} {self.zone_label}"
            )

        if config.initiator_log_channel:
            await self._send_quietly(config.initiator_log_channel, initiator_line)
        if config.log_channel:
            await self._send_quietly(config.log_channel, log_line)

    # --- Timers ---

    def _schedule_reminders(self, call: DefenceCall, now: datetime) -> list[str]:
        """Schedule the pre-attack reminders still ahead of *now*."""
        if call.attack_time is None:
            return []
        tokens = []
        due = reminder_times(call.attack_time, now)
        for slot, fire_at in due:
            tokens.append(
                self.timers.schedule(
                    call.channel_id,
                    reminder_timer(slot.minutes_before),
                    fire_at,
                    self._send_reminder,
                    call.channel_id,
                    slot.label,
                )
            )
        skipped = len(REMINDER_SLOTS) - len(due)
        if skipped:
            logger.info("reminders_skipped_past channel=%s count=%d", call.channel_id, skipped)
        return tokens

    def _schedule_expiry(self, call: DefenceCall) -> str:
        return self.timers.schedule(
            call.channel_id, EXPIRY_TIMER, call.expires_at, self._expire, call.channel_id
        )

    def _schedule_deletion(self, call: DefenceCall) -> str:
        return self.timers.schedule(
            call.channel_id, DELETION_TIMER, call.expires_at, self._delete, call.channel_id
        )

    async def _send_reminder(self, channel_id: str, label: str) -> None:
        call = self.registry.get(channel_id)
        if call is None:
            return
        content = f"{role_mentions(call.ping_roles)} **{label}**"
        try:
            await self.gateway.send_message(channel_id, content, mention_roles=call.ping_roles)
            logger.info("reminder_sent channel=%s label=%s", channel_id, label)
        except GatewayError:
            logger.warning("reminder_send_failed channel=%s label=%s", channel_id, label)

    # --- Messages and completion ---

    async def on_message(self, channel_id: str, message: InboundMessage) -> bool:
        """Log a message in a tracked channel and match it against the call.

        Returns True when the message completed the call.
        """
        if message.author_is_bot or channel_id not in self.registry:
            return False
        async with self._lock(channel_id):
            call = self.registry.get(channel_id)
            if call is None:
                return False
            self.registry.append_message(
                channel_id,
                ChannelMessage(content=message.content, timestamp=self.now(), origin="response"),
            )
            if channel_id not in self._listening or not call.is_open:
                return False
            pledge = match_completion(message.content, call.requested_amount)
            if pledge is None:
                return False
            await self._complete(call, message, pledge)
            return True

    async def _complete(self, call: DefenceCall, message: InboundMessage, pledge: Pledge) -> None:
        """open → completed → locked. Caller holds the channel lock."""
        channel_id = call.channel_id
        self._listening.discard(channel_id)
        self.timers.cancel_channel(channel_id)
        now = self.now()

        self.ledger.record(
            Submission(
                channel_id=channel_id,
                units=pledge.pledged,
                declared_time=call.deadline_label,
                user_id=message.author_id,
                display_name=message.author_name,
                submitted_at=now,
                coordinates=call.coordinates,
                kind=call.kind,
            )
        )

        if call.kind == "standing":
            template = STANDING_COMPLETED
            expires_at = call.expires_at
        else:
            template = CROP_COMPLETED if call.kind == "crop" else CALL_COMPLETED
            expires_at = max(call.expires_at, now + COMPLETION_GRACE)
        # The announced hours always match the deletion timer.
        hours_left = max(0, math.ceil((expires_at - now).total_seconds() / 3600))
        announcement = template.format(hours=hours_left)

        call = call.model_copy(update={"status": "completed", "expires_at": expires_at})
        self.registry.replace(call)
        await self._send_quietly(channel_id, announcement)

        for role_id in call.view_roles:
            try:
                await self.gateway.set_permission(channel_id, role_id, send_messages=False)
            except GatewayError:
                logger.warning("defence_lock_failed channel=%s role=%s", channel_id, role_id)
        call = call.model_copy(update={"status": "locked"})
        self.registry.replace(call)

        self._schedule_deletion(call)
        logger.info(
            "defence_call_completed channel=%s kind=%s units=%d by=%s delete_at=%s",
            channel_id,
            call.kind,
            pledge.pledged,
            message.author_id,
            call.expires_at.isoformat(),
        )
        self._end_listener(channel_id, "completed")

    def _end_listener(self, channel_id: str, reason: str) -> None:
        """Stop matching for a channel and purge its ledger entries."""
        self._listening.discard(channel_id)
        self.ledger.purge(channel_id)
        logger.info("defence_listener_ended channel=%s reason=%s", channel_id, reason)

    # --- Expiry and deletion ---

    async def _expire(self, channel_id: str) -> None:
        """Hard expiry of a call nobody completed."""
        async with self._lock(channel_id):
            call = self.registry.get(channel_id)
            if call is None or not call.is_open:
                return
            self.timers.cancel_channel(channel_id)
            self._end_listener(channel_id, "expired")
            notice = STANDING_EXPIRED if call.kind == "standing" else CALL_EXPIRED
            await self._send_quietly(channel_id, notice)
            await self._delete_channel_quietly(channel_id, "Defence call expired")
            self.registry.remove(channel_id)
            logger.info("defence_call_expired channel=%s", channel_id)
        self._locks.pop(channel_id, None)

    async def _delete(self, channel_id: str) -> None:
        """Grace-period deletion of a completed call."""
        async with self._lock(channel_id):
            call = self.registry.get(channel_id)
            if call is None or call.is_open:
                return
            self.timers.cancel_channel(channel_id)
            self._end_listener(channel_id, "deleted")
            await self._delete_channel_quietly(channel_id, "Defence call completed")
            self.registry.remove(channel_id)
            logger.info("defence_call_deleted channel=%s", channel_id)
        self._locks.pop(channel_id, None)

    # --- Restart ---

    async def restore_on_startup(self) -> RestoreSummary:
        """Rebuild listeners and timers from the registry on disk.

        Calls already past ``expires_at`` are deleted (best-effort) and
        forgotten. Open calls get their listener and expiry timer back;
        completed calls get their deletion timer. Pre-attack reminders are
        only rebuilt when ``restore_reminders`` is set, and then only those
        still in the future.
        """
        now = self.now()
        self.load_state()
        calls = self.registry.all()
        restored = removed = 0
        for call in calls:
            try:
                if call.expires_at <= now:
                    await self._delete_channel_quietly(call.channel_id, "Defence call expired")
                    self.registry.remove(call.channel_id)
                    removed += 1
                    continue
                if call.is_open:
                    self._listening.add(call.channel_id)
                    self._schedule_expiry(call)
                    if self.restore_reminders:
                        self._schedule_reminders(call, now)
                else:
                    self._schedule_deletion(call)
                restored += 1
            except Exception:  # Last-resort handler: one bad record must not block the rest
                logger.exception("defence_restore_failed channel=%s", call.channel_id)

        for channel_id in self.ledger.channels():
            if channel_id not in self._listening:
                self.ledger.purge(channel_id)

        logger.info("defence_calls_restored restored=%d removed=%d", restored, removed)
        return RestoreSummary(restored=restored, removed=removed)

    # --- Gateway helpers ---

    async def _send_quietly(self, channel_id: str, content: str) -> None:
        try:
            await self.gateway.send_message(channel_id, content)
        except GatewayError:
            logger.warning("defence_send_failed channel=%s", channel_id)

    async def _delete_channel_quietly(self, channel_id: str, reason: str) -> None:
        try:
            await self.gateway.delete_channel(channel_id, reason=reason)
        except GatewayError:
            logger.warning("defence_channel_delete_failed channel=%s", channel_id)

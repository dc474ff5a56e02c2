#!/usr/bin/env python3
"""
Geofence events: rules that react to a device entering or leaving a geofence.

Events are a closed set of pydantic models discriminated by ``kind``. The
whole model is stored as JSON, so adding a field to a variant needs no
schema migration.

Lifecycle of one event:
    created -> attached (on_add_to_geofence accepted it, event_id assigned)
    -> evaluating(direction) -> fired | suppressed
A delayed trigger re-checks live device state when it becomes due.
"""
from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, Dict, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field, TypeAdapter

from .exceptions import ConfigurationError, InvalidAddressError, MailError, NotFoundError
from .logging_config import get_logger
from .notifications import ADMIN_SERVER_KEY, DEVICE_SERVER_KEY

logger = get_logger()


class Direction(str, Enum):
    ENTER = "Enter"
    LEAVE = "Leave"


class CounterMode(str, Enum):
    INCREMENT = "increment"
    DECREMENT = "decrement"
    RESET = "reset"


class EventContext(Protocol):
    """What an event may touch while it is added or fired."""

    store: Any
    counters: Any
    mail: Any
    push: Any
    scheduler: Any

    def is_device_in_geofence(self, device_id: int, minor: int) -> bool: ...


class Trigger(BaseModel):
    direction: Direction
    delay: int = Field(0, ge=0)  # seconds


class Event(BaseModel):
    kind: str
    event_id: int = -1
    minor: int = -1
    description: str = ""
    trigger: Optional[Trigger] = None

    def on_add_to_geofence(self, ctx: EventContext) -> bool:
        """Called once before the event gets its id; False discards it."""
        return True

    def check_trigger(self, direction: Direction, device_id: int, ctx: EventContext) -> bool:
        """Fire now, schedule a delayed check, or suppress.

        Returns True when the trigger matched the direction.
        """
        if self.trigger is None or self.trigger.direction != direction:
            return False
        if self.trigger.delay == 0:
            self.fire(device_id, direction, ctx)
        else:
            ctx.scheduler.submit(device_id, self.minor, self.event_id, direction, self.trigger.delay)
            logger.debug(
                f"Event {self.minor}/{self.event_id} scheduled in {self.trigger.delay}s for device {device_id}",
                "EVENTS",
            )
        return True

    def condition_still_fulfilled(self, device_id: int, ctx: EventContext) -> bool:
        inside = ctx.is_device_in_geofence(device_id, self.minor)
        if self.trigger is not None and self.trigger.direction == Direction.LEAVE:
            return not inside
        return inside

    def check_delayed(self, device_id: int, direction: Direction, ctx: EventContext) -> bool:
        """Run a due delayed check; fires only if the device state still matches."""
        if not self.condition_still_fulfilled(device_id, ctx):
            logger.info(
                f"Event {self.minor}/{self.event_id} suppressed - device {device_id} condition no longer fulfilled",
                "EVENTS",
            )
            return False
        return self.fire(device_id, direction, ctx)

    def fire(self, device_id: int, direction: Direction, ctx: EventContext) -> bool:
        """Execute the action; failures are logged and never reach the caller."""
        try:
            self.execute(device_id, direction, ctx)
            logger.info(f"Event {self.minor}/{self.event_id} ({self.kind}) fired for device {device_id}", "EVENTS")
            return True
        except Exception as e:
            logger.error(f"Event {self.minor}/{self.event_id} ({self.kind}) failed for device {device_id}", "EVENTS", e)
            return False

    def execute(self, device_id: int, direction: Direction, ctx: EventContext):
        raise NotImplementedError


class ModifyCounterEvent(Event):
    kind: Literal["modify_counter"] = "modify_counter"
    trigger: Trigger
    mode: CounterMode = CounterMode.INCREMENT
    counter_id: Optional[int] = None

    def on_add_to_geofence(self, ctx: EventContext) -> bool:
        if self.counter_id is None:
            self.counter_id = ctx.counters.insert_counter()
            return True
        if not ctx.counters.is_counter_existing(self.counter_id):
            logger.warning(f"Counter {self.counter_id} does not exist - event discarded", "EVENTS")
            return False
        return True

    def execute(self, device_id: int, direction: Direction, ctx: EventContext):
        if self.mode == CounterMode.INCREMENT:
            ctx.counters.increment_counter(self.counter_id)
        elif self.mode == CounterMode.DECREMENT:
            ctx.counters.decrement_counter(self.counter_id)
        else:
            ctx.counters.reset_counter(self.counter_id)


class GeofenceCounterEvent(Event):
    """Counts devices currently inside the geofence.

    Reacts to every enter and leave regardless of its trigger.
    """
    kind: Literal["geofence_counter"] = "geofence_counter"
    counter_id: Optional[int] = None

    def on_add_to_geofence(self, ctx: EventContext) -> bool:
        self.counter_id = ctx.counters.insert_counter()
        return True

    def check_trigger(self, direction: Direction, device_id: int, ctx: EventContext) -> bool:
        self.fire(device_id, direction, ctx)
        return True

    def execute(self, device_id: int, direction: Direction, ctx: EventContext):
        if direction == Direction.ENTER:
            ctx.counters.increment_counter(self.counter_id)
        else:
            ctx.counters.decrement_counter(self.counter_id)


class SendMailEvent(Event):
    kind: Literal["send_mail"] = "send_mail"
    trigger: Trigger
    recipient: str
    title: str = ""
    message: str = ""

    def on_add_to_geofence(self, ctx: EventContext) -> bool:
        try:
            return ctx.mail.send_default_verification_mail(self.recipient)
        except (InvalidAddressError, ConfigurationError, MailError) as e:
            logger.error(f"Could not start verification for {self.recipient}", "EVENTS", e)
            return False

    def execute(self, device_id: int, direction: Direction, ctx: EventContext):
        ctx.mail.send_to_confirmed_recipient(self.recipient, self.title, self.message)


class NotificationEvent(Event):
    trigger: Trigger
    title: str = ""
    message: str = ""


class AdminNotificationEvent(NotificationEvent):
    kind: Literal["admin_notification"] = "admin_notification"

    def on_add_to_geofence(self, ctx: EventContext) -> bool:
        return ctx.push.has_server_key(ADMIN_SERVER_KEY)

    def execute(self, device_id: int, direction: Direction, ctx: EventContext):
        ctx.push.send_to_admins(self.title, self.message)


class DeviceNotificationEvent(NotificationEvent):
    kind: Literal["device_notification"] = "device_notification"

    def on_add_to_geofence(self, ctx: EventContext) -> bool:
        return ctx.push.has_server_key(DEVICE_SERVER_KEY)

    def execute(self, device_id: int, direction: Direction, ctx: EventContext):
        # token is read at fire time; it may have changed since the event was added
        token = ctx.store.find_device(device_id).push_token
        if not token:
            raise NotFoundError(f"Push token of device {device_id}")
        ctx.push.send_to_device(self.title, self.message, token)


AnyEvent = Annotated[
    Union[
        ModifyCounterEvent,
        GeofenceCounterEvent,
        SendMailEvent,
        AdminNotificationEvent,
        DeviceNotificationEvent,
    ],
    Field(discriminator="kind"),
]

EVENT_ADAPTER: TypeAdapter = TypeAdapter(AnyEvent)

EVENT_KINDS = ("modify_counter", "geofence_counter", "send_mail", "admin_notification", "device_notification")


def parse_event(data: Union[str, bytes, Dict[str, Any]]) -> Event:
    """Build the event variant named by ``kind``; raises pydantic.ValidationError."""
    if isinstance(data, (str, bytes)):
        return EVENT_ADAPTER.validate_json(data)
    return EVENT_ADAPTER.validate_python(data)

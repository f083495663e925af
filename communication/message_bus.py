"""
Event bus for the queue orchestration engine.
Location-keyed publish/subscribe hub that keeps an event history.
"""
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
import inspect
import logging

from rich.console import Console
from rich.table import Table

from .message import Event, EventType


logger = logging.getLogger("QueueOrchestrator")


@dataclass
class Subscription:
    """A handler registered for one event type (or all) on one location (or all)."""
    subscriber: str
    handler: Callable[[Event], Any]
    event_type: Optional[EventType] = None
    location_id: Optional[str] = None

    def matches(self, event: Event) -> bool:
        if self.event_type is not None and self.event_type != event.event_type:
            return False
        if self.location_id is not None and self.location_id != event.location_id:
            return False
        return True


class MessageBus:
    """
    Central event bus.

    Features:
    - Subscriptions filtered by event type and location
    - Sync and ``async def`` handlers
    - Event history with filters
    - Subscriber failures are logged, never raised to the publisher
    """

    def __init__(self, verbose: bool = True):
        """
        Initialize the event bus.

        Args:
            verbose: Whether to print events to console
        """
        self.subscriptions: List[Subscription] = []
        self.event_history: List[Event] = []
        self.delivered: Dict[EventType, int] = defaultdict(int)
        self.failures: List[Dict[str, Any]] = []
        self.verbose = verbose
        self.console = Console()

    def subscribe(self,
                  subscriber: str,
                  handler: Callable[[Event], Any],
                  event_type: Optional[EventType] = None,
                  location_id: Optional[str] = None) -> Subscription:
        """
        Register a handler.

        Args:
            subscriber: Name of the subscribing service or observer
            handler: Callback (plain function or coroutine function)
            event_type: Only deliver this event type (None for all)
            location_id: Only deliver events of this location (None for all)

        Returns:
            The created subscription
        """
        subscription = Subscription(subscriber, handler, event_type, location_id)
        self.subscriptions.append(subscription)
        if self.verbose:
            what = event_type.value if event_type else "*"
            self.console.print(f"[dim]📡 Subscribed: {subscriber} → {what}[/dim]")
        return subscription

    def unsubscribe(self, subscriber: str) -> None:
        """Remove every subscription of a subscriber."""
        self.subscriptions = [s for s in self.subscriptions if s.subscriber != subscriber]

    async def publish(self, event: Event) -> int:
        """
        Publish an event to every matching subscriber except its sender.

        Args:
            event: The event to publish

        Returns:
            Number of handlers that completed without error
        """
        self.event_history.append(event)
        logger.info(
            "[EventBus] %s → %s (%s) correlation=%s | %s",
            event.sender,
            event.location_id or "ALL",
            event.event_type.value,
            event.correlation_id,
            event.preview(),
        )
        if self.verbose:
            self._print_event(event)

        delivered = 0
        for subscription in list(self.subscriptions):
            if subscription.subscriber == event.sender or not subscription.matches(event):
                continue
            try:
                result = subscription.handler(event)
                if inspect.isawaitable(result):
                    await result
                delivered += 1
            except Exception as e:
                self.failures.append({
                    "subscriber": subscription.subscriber,
                    "event_type": event.event_type.value,
                    "correlation_id": event.correlation_id,
                    "error": f"{type(e).__name__}: {e}",
                })
                logger.error(
                    "[EventBus] subscriber %s failed on %s: %s",
                    subscription.subscriber, event.event_type.value, e,
                )
                if self.verbose:
                    self.console.print(
                        f"[red]⚠️ Subscriber '{subscription.subscriber}' failed: {e}[/red]"
                    )

        self.delivered[event.event_type] += delivered
        return delivered

    def _print_event(self, event: Event) -> None:
        """Pretty print an event to console."""
        type_colors = {
            EventType.QUEUE_ENTRY_ADDED: "green",
            EventType.QUEUE_ENTRY_UPDATED: "cyan",
            EventType.QUEUE_ENTRY_REMOVED: "magenta",
            EventType.QUEUE_REBALANCE_NEEDED: "yellow",
            EventType.SYSTEM_ALERT: "red",
            EventType.EMERGENCY_ACTIVATED: "red",
        }
        color = type_colors.get(event.event_type, "white")

        self.console.print(
            f"[dim]{event.timestamp.strftime('%H:%M:%S.%f')[:-3]}[/dim] "
            f"[bold]{event.sender}[/bold] → [bold]{event.location_id or 'ALL'}[/bold] "
            f"[{color}]({event.event_type.value})[/{color}]"
        )
        if event.entity_id:
            self.console.print(f"  [dim]└─ {event.entity_id}: {event.preview(150)}[/dim]")

    def get_history(self,
                    sender: Optional[str] = None,
                    location_id: Optional[str] = None,
                    event_type: Optional[EventType] = None,
                    entity_id: Optional[str] = None) -> List[Event]:
        """
        Get filtered event history.

        Args:
            sender: Filter by publishing service
            location_id: Filter by location
            event_type: Filter by event type
            entity_id: Filter by affected entity

        Returns:
            List of events matching the filters
        """
        events = self.event_history

        if sender:
            events = [e for e in events if e.sender == sender]
        if location_id:
            events = [e for e in events if e.location_id == location_id]
        if event_type:
            events = [e for e in events if e.event_type == event_type]
        if entity_id:
            events = [e for e in events if e.entity_id == entity_id]

        return events

    def get_conversation(self, correlation_id: str) -> List[Event]:
        """Get all events sharing a correlation id."""
        return [e for e in self.event_history if e.correlation_id == correlation_id]

    def print_summary(self) -> None:
        """Print published/delivered counts per event type."""
        table = Table(title="📊 Event Bus Summary")
        table.add_column("Event", style="cyan")
        table.add_column("Published", justify="right")
        table.add_column("Delivered", justify="right")

        published = defaultdict(int)
        for event in self.event_history:
            published[event.event_type] += 1

        for event_type in EventType:
            if published[event_type] or self.delivered[event_type]:
                table.add_row(
                    event_type.value,
                    str(published[event_type]),
                    str(self.delivered[event_type]),
                )

        self.console.print(table)
        if self.failures:
            self.console.print(f"[red]Subscriber failures: {len(self.failures)}[/red]")

    def export_log(self) -> List[dict]:
        """Export event history as list of dictionaries."""
        return [event.to_dict() for event in self.event_history]

    def clear_history(self) -> None:
        """Clear event history."""
        self.event_history = []
        self.delivered = defaultdict(int)
        self.failures = []

"""
Queue Coordinator - Wires the engine together and runs reconciliation.

This module implements the process-level entry point with:
- Construction of every service on one event bus and one sync writer
- Service lifecycle management
- The periodic reconciliation and resync loops
- Console queue board and health report
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
import asyncio

from rich.table import Table

from benchmark import profile_function
from communication.message_bus import MessageBus
from config import AppConfig, config as default_config, health_checker
from engine.alerts import AlertCenter
from engine.assignment_engine import AssignmentEngine
from engine.base_service import BaseService
from engine.checkin_manager import CheckinManager
from engine.data_loader import DirectoryLoader, seed_demo_directory, seed_demo_rules
from engine.employee_directory import EmployeeDirectory
from engine.queue_ledger import QueueService
from engine.rule_engine import RuleEngine
from models.location import Location
from models.queue_entry import QueueStatus
from models.rules import ActionType
from persistence.repository import InMemoryRepository
from persistence.sync import SyncWriter


class QueueCoordinator(BaseService):
    """
    Owns one instance of every engine service.

    Callers hold a reference to the coordinator and reach the services through
    its attributes (``queue``, ``checkins``, ``directory``, ``rules``, ...).
    """

    def __init__(self,
                 repository=None,
                 message_bus: Optional[MessageBus] = None,
                 app_config: Optional[AppConfig] = None,
                 clock=None,
                 verbose: Optional[bool] = None):
        """
        Build and wire every service.

        Args:
            repository: Persistence collaborator (in-memory if omitted)
            message_bus: Event bus (a new one if omitted)
            app_config: Configuration (module config if omitted)
            clock: Time source shared by every service
            verbose: Console output (defaults to the config setting)
        """
        self.config = app_config or default_config
        verbose = self.config.verbose if verbose is None else verbose
        message_bus = message_bus or MessageBus(verbose=verbose)
        super().__init__("Coordinator", message_bus, clock=clock, verbose=verbose)

        queue_cfg = self.config.queue
        self.repository = repository or InMemoryRepository(clock=self.clock)
        self.sync = SyncWriter(self.repository, self.config.persistence, clock=self.clock)

        self.directory = EmployeeDirectory(message_bus, clock=self.clock, verbose=verbose)
        self.alerts = AlertCenter(message_bus, clock=self.clock, verbose=verbose)
        self.rules = RuleEngine(message_bus, self.directory, self.alerts,
                                imbalance_threshold=queue_cfg.imbalance_threshold,
                                clock=self.clock, verbose=verbose)
        self.assignment = AssignmentEngine(message_bus, self.directory,
                                           default_service_minutes=queue_cfg.default_service_minutes,
                                           clock=self.clock, verbose=verbose)
        self.queue = QueueService(message_bus, self.directory, self.assignment, self.rules, self.sync,
                                  queue_config=queue_cfg, clock=self.clock, verbose=verbose)
        self.checkins = CheckinManager(message_bus, self.directory, self.sync,
                                       queue_config=queue_cfg, clock=self.clock, verbose=verbose)
        self.loader = DirectoryLoader(message_bus, self.directory, clock=self.clock, verbose=verbose)
        self.queue.checkins = self.checkins
        self.checkins.queue = self.queue

        self._tasks: List[asyncio.Task] = []
        self.reconcile_count = 0
        self.last_reconcile: Optional[Dict[str, Any]] = None
        self.log_file: Optional[str] = None

    @property
    def services(self) -> List[BaseService]:
        return [
            self.directory,
            self.alerts,
            self.rules,
            self.assignment,
            self.queue,
            self.checkins,
            self.loader,
            self,
        ]

    def seed_demo(self) -> Location:
        """Register the demo salon, its staff, services and rules."""
        location = seed_demo_directory(self.directory)
        seed_demo_rules(self.rules, location.id)
        self.log(f"Demo data loaded: {location}", "success")
        return location

    # ==================== Reconciliation ====================

    @profile_function
    async def reconcile(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        One reconciliation pass.

        Expires and purges check-ins, purges finished queue entries,
        recomputes positions and workloads for every location, refreshes wait
        estimates, runs the load-balance check and the location rules, then
        flushes pending writes.

        Returns:
            Summary of what the pass changed
        """
        at = self.now(now)
        summary: Dict[str, Any] = {"at": at.isoformat()}

        summary["checkins_expired"] = len(await self.checkins.expire_old_checkins(at))
        summary["checkins_purged"] = await self.checkins.cleanup_old_checkins(at)
        summary["entries_purged"] = await self.queue.cleanup_completed_entries(at)

        alerts = 0
        actions = 0
        for location_id in self.queue.location_ids():
            self.queue.recalculate(location_id)
            for entry in self.queue.refresh_wait_estimates(location_id):
                await self.queue.persist(entry)

            if await self.rules.check_load_balance(location_id) is not None:
                alerts += 1
            actions += await self._run_location_rules(location_id, at)

        summary["alerts_raised"] = alerts
        summary["rule_actions"] = actions
        summary["writes_flushed"] = await self.sync.flush_pending()
        summary["pending_writes"] = self.sync.pending_count()

        self.reconcile_count += 1
        self.last_reconcile = summary
        self.log(f"🔄 Reconciled: {summary}", "debug")
        return summary

    async def _run_location_rules(self, location_id: str, at: datetime) -> int:
        """Evaluate location rules and run the location-level actions."""
        waiting = self.queue.waiting_entries(location_id)
        context = self.rules.location_context(
            location_id,
            queue_length=len(waiting),
            average_wait_time=self.queue.stats(location_id, at).average_wait_time,
            now=at,
        )
        actions = self.rules.evaluate(location_id, context)
        if not actions:
            return 0
        if self.rules.is_emergency(location_id):
            for action in actions:
                self.log(f"Advisory (emergency override): {action.type.value}", "warning")
            return 0

        for action in actions:
            if action.type == ActionType.REASSIGN_EMPLOYEE:
                await self.queue.rebalance(location_id, now=at)
            elif action.type == ActionType.EMERGENCY_OVERRIDE and not self.rules.is_emergency(location_id):
                await self.rules.activate_emergency_override(
                    location_id, action.parameters.get("reason", "Triggered by queue rule")
                )
        return len(actions)

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        """Start file logging, every service and the background loops."""
        self.log_file = BaseService.setup_file_logging(self.config.log_dir)
        for service in self.services:
            service.startup()
        if not self._tasks:
            self._tasks = [
                asyncio.create_task(self._reconcile_loop()),
                asyncio.create_task(self._resync_loop()),
            ]

    async def stop(self) -> None:
        """Cancel the background loops and shut every service down."""
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []

        for service in reversed(self.services):
            service.shutdown()

    async def _reconcile_loop(self) -> None:
        interval = self.config.queue.reconcile_interval_seconds
        while self.is_active:
            try:
                await self.reconcile()
            except Exception as e:
                if not self._handle_error(e, "reconcile()"):
                    break
            await asyncio.sleep(interval)

    async def _resync_loop(self) -> None:
        interval = self.config.persistence.resync_interval_seconds
        while self.is_active:
            await asyncio.sleep(interval)
            if self.sync.pending_count():
                try:
                    await self.sync.flush_pending()
                except Exception as e:
                    if not self._handle_error(e, "flush_pending()"):
                        break

    # ==================== Reporting ====================

    def health(self) -> Dict[str, Any]:
        return health_checker.run_all_checks(
            self.services,
            pending_writes=self.sync.pending_count(),
            log_dir=self.config.log_dir,
        )

    def get_metrics(self) -> Dict[str, Any]:
        metrics = super().get_metrics()
        metrics.update({
            "reconcile_count": self.reconcile_count,
            "pending_writes": self.sync.pending_count(),
            "entries": len(self.queue.entries),
            "checkins": len(self.checkins.checkins),
            "active_alerts": len(self.alerts.active_alerts()),
        })
        return metrics

    def print_queue_board(self, location_id: Optional[str] = None) -> None:
        """Print the live queue of one or every location."""
        location_ids = [location_id] if location_id else self.queue.location_ids()
        for loc_id in location_ids:
            location = self.directory.locations.get(loc_id)
            title = f"💈 {location.name if location else loc_id} - Queue"
            if self.rules.is_emergency(loc_id):
                title += " [EMERGENCY OVERRIDE]"

            table = Table(title=title)
            table.add_column("#", justify="right", style="cyan")
            table.add_column("Customer")
            table.add_column("Services")
            table.add_column("Employee")
            table.add_column("Method", style="dim")
            table.add_column("Priority")
            table.add_column("Status")
            table.add_column("Wait", justify="right")

            active = self.queue.entries_for_location(
                loc_id, [QueueStatus.WAITING, QueueStatus.CALLED, QueueStatus.IN_PROGRESS]
            )
            for entry in active:
                table.add_row(
                    str(entry.position) if entry.position else "-",
                    entry.customer_name,
                    ", ".join(entry.services),
                    entry.assigned_employee_name or "[dim]unassigned[/dim]",
                    entry.assignment_method.value,
                    entry.priority.value,
                    entry.status.value,
                    f"{entry.estimated_wait_time} min",
                )
            self.console.print(table)

            stats = self.queue.stats(loc_id)
            self.console.print(
                f"[dim]Waiting: {stats.total_waiting} | Serving: {stats.currently_serving} | "
                f"Served today: {stats.served_today} | Avg wait: {stats.average_wait_time:.0f} min | "
                f"Remote check-ins: {stats.remote_checkins}[/dim]"
            )

    def shutdown_summary(self) -> Dict[str, Any]:
        """Metrics of every service, keyed by name."""
        return {service.name: service.get_metrics() for service in self.services}

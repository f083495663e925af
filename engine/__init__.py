"""
Queue Orchestration Engine services.

This module contains the service implementations wired together by the
QueueCoordinator.
"""
from .base_service import BaseService, IEngineService, ServiceState
from .employee_directory import EmployeeDirectory
from .assignment_engine import AssignmentEngine, CandidateScore
from .alerts import AlertCenter
from .rule_engine import RuleEngine
from .queue_ledger import QueueService
from .checkin_manager import CheckinManager
from .data_loader import DirectoryLoader, seed_demo_directory, seed_demo_rules
from .coordinator import QueueCoordinator

__all__ = [
    "BaseService",
    "IEngineService",
    "ServiceState",
    "EmployeeDirectory",
    "AssignmentEngine",
    "CandidateScore",
    "AlertCenter",
    "RuleEngine",
    "QueueService",
    "CheckinManager",
    "DirectoryLoader",
    "seed_demo_directory",
    "seed_demo_rules",
    "QueueCoordinator",
]

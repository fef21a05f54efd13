"""
dca_batch.services -- Stores, gate, classifier, executor and scheduler.
"""

from dca_batch.services.authorization_gate import AuthorizationGate, PermittedVersionStore
from dca_batch.services.bounded import BoundedCaller, FireGuard
from dca_batch.services.classifier import COMMON_FATAL_MARKERS, FailureClassifier
from dca_batch.services.executor import OperationExecutor
from dca_batch.services.job_store import JobStore, SqlJobStore
from dca_batch.services.scheduler import OperationScheduler

__all__ = [
    "AuthorizationGate",
    "BoundedCaller",
    "COMMON_FATAL_MARKERS",
    "FailureClassifier",
    "FireGuard",
    "JobStore",
    "OperationExecutor",
    "OperationScheduler",
    "PermittedVersionStore",
    "SqlJobStore",
]

"""
dca_batch.models -- ORM models for recurring operation persistence.

Architecture: dca_batch/models. Imports from dca_kernel.db.base only.
"""

from dca_batch.models.operation import ScheduledOperationModel

__all__ = [
    "ScheduledOperationModel",
]

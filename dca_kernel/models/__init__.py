"""
dca_kernel.models -- ORM models owned by the kernel.

Architecture: dca_kernel/models. Imports from dca_kernel.db.base only.
"""

from dca_kernel.models.execution_record import ExecutionRecordModel

__all__ = [
    "ExecutionRecordModel",
]

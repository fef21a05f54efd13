"""
DCA Kernel - pure core of the recurring delegated-operation executor.

Provides:
- Truncating amount normalization at per-token precision
- Chain address validation
- Authorization version policy
- Typed exception taxonomy (fatal / collaborator / ambiguous / persistence)
- Structured JSON logging
- SQLAlchemy base, engine helpers and the execution-record store
"""

__version__ = "0.1.0"

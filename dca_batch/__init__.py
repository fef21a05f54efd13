"""
dca_batch -- Recurring delegated-operation execution.

Loads scheduled operations, re-checks the owner's delegation before each
fire, normalizes amounts, runs the precheck/execute protocol against
remote abilities and records what happened on-chain.  An in-process
polling scheduler drives fires; ``DcaOrchestrator`` wires everything.

Architecture:
    dca_batch/ is a top-level package.  Nothing in dca_kernel imports
    from dca_batch.

Invariants:
    - No ability call before the authorization gate passes.
    - execute() only after a successful precheck, never retried here.
    - An execution record exists only for a confirmed transaction.
    - Fatal failures disable the job; transient failures leave it enabled.
    - Clock injection (no datetime.now() calls outside SystemClock).
    - At most one fire per job at a time.
"""

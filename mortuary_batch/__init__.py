"""
mortuary_batch -- scheduled and on-demand billing reconciliation.

Runs the storage-charge reconciliation over every open case on a cron
schedule plus a one-off run shortly after startup, with SAVEPOINT
isolation per case so one bad case never aborts the rest.

Architecture:
    mortuary_batch/ is a top-level package.  Nothing in mortuary_kernel
    imports from it at module level.

Invariants:
    SAVEPOINT isolation per case
    Job idempotency (UNIQUE idempotency_key)
    Clock injection (no datetime.now() calls)
    Schedule evaluation is pure
    Graceful shutdown between cases
"""

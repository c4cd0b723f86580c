"""
After-commit hooks -- defer side effects until the transaction is durable.

Responsibility:
    Kernel services are flush-only; they cannot know whether the caller
    will commit.  Side effects that must only happen for durable state
    (publishing session events, clearing compartment locks) are queued on
    the session with ``run_after_commit()`` and executed by SQLAlchemy's
    ``after_commit`` session event.  If the root transaction ends without
    committing (rollback or close), the queued callbacks are discarded.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Failure modes:
    - A callback that raises is logged and skipped; the commit has already
      happened and the remaining callbacks still run.
"""

from collections.abc import Callable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from firestock_kernel.logging_config import get_logger

logger = get_logger("services.after_commit")

_CALLBACKS_KEY = "firestock_after_commit_callbacks"
_LISTENING_KEY = "firestock_after_commit_listening"


def run_after_commit(session: Session, callback: Callable[[], None]) -> None:
    """Queue ``callback`` to run once the session's root transaction commits."""
    if not session.info.get(_LISTENING_KEY):
        event.listen(session, "after_commit", _fire_callbacks)
        event.listen(session, "after_transaction_end", _discard_callbacks)
        session.info[_LISTENING_KEY] = True
    session.info.setdefault(_CALLBACKS_KEY, []).append(callback)


def pending_callbacks(session: Session) -> int:
    """Number of callbacks waiting for commit (used by tests)."""
    return len(session.info.get(_CALLBACKS_KEY, ()))


def _fire_callbacks(session: Session) -> None:
    # after_commit is also dispatched on SAVEPOINT release
    if session.in_nested_transaction():
        return
    callbacks = session.info.pop(_CALLBACKS_KEY, [])
    for callback in callbacks:
        try:
            callback()
        except Exception:
            logger.exception("after_commit_callback_failed")


def _discard_callbacks(session: Session, transaction: SessionTransaction) -> None:
    # Only the root transaction decides; savepoint rollbacks keep the queue.
    if transaction.parent is not None:
        return
    discarded = session.info.pop(_CALLBACKS_KEY, None)
    if discarded:
        logger.debug(
            "after_commit_callbacks_discarded",
            extra={"count": len(discarded)},
        )

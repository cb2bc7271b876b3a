from typing import Callable, List

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session, SessionTransaction

from asset_store.core.logger import get_logger

logger = get_logger(__name__)

AFTER_COMMIT_KEY = "after_commit_callbacks"


def call_after_commit(session: AsyncSession, callback: Callable[[], None]) -> None:
    """
    登记一个在当前事务提交成功后执行的回调。
    事务回滚时回调被丢弃，不会执行。
    """
    callbacks: List[Callable[[], None]] = session.sync_session.info.setdefault(AFTER_COMMIT_KEY, [])
    callbacks.append(callback)


@event.listens_for(Session, "after_commit")
def run_after_commit_callbacks(session: Session):
    callbacks = session.info.pop(AFTER_COMMIT_KEY, [])
    for callback in callbacks:
        # 事务已经提交，回调失败只记录，不能再让调用方以为写入失败
        try:
            callback()
        except Exception:
            logger.opt(exception=True).error("After-commit callback failed")


@event.listens_for(Session, "after_soft_rollback")
def discard_after_commit_callbacks(session: Session, previous_transaction: SessionTransaction):
    if previous_transaction.nested:
        return
    dropped = session.info.pop(AFTER_COMMIT_KEY, [])
    if dropped:
        logger.debug(f"Transaction rolled back, dropped {len(dropped)} after-commit callback(s)")

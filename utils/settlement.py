# utils/settlement.py
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from utils.log_utils import get_logger

logger = get_logger('mining')


@dataclass
class SettlementResult:
    session_id: int
    changed: bool  # CAS 是否生效
    points: int = 0
    credited: bool = False
    failed: bool = False  # 写库异常，会话仍为进行中
    window_started_at: Optional[datetime] = None


def finalize_session(store, ledger, user_id, session_id, payable, now, window_started_at):
    """
    结束挖矿并入账
    1. 条件更新 is_active: true -> false（只有一方能成功）
    2. 只有更新生效才入账；入账失败需要人工补发（见 backfill 任务）
    """
    payable = max(0, int(payable))
    try:
        changed = store.conditional_finalize(session_id, payable, now)
    except SQLAlchemyError as e:
        # 结束失败：保持进行中，下次启动由 recovery / sweep 处理
        db.session.rollback()
        logger.error(f"[finalize] session {session_id} finalize failed, left active: {e}")
        return SettlementResult(session_id=session_id, changed=False, failed=True, window_started_at=window_started_at)

    if not changed:
        logger.info(f"[finalize] session {session_id} already finalized elsewhere, skip credit")
        return SettlementResult(session_id=session_id, changed=False, window_started_at=window_started_at)

    credited = False
    if payable > 0:
        try:
            credited = ledger.credit(user_id, payable, session_id, window_started_at=window_started_at)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.critical(
                f"[finalize] session {session_id} finalized but credit FAILED: user={user_id} "
                f"points={payable} window={window_started_at} -> needs backfill: {e}"
            )

    logger.info(f"[finalize] session {session_id} ended with {payable} points (credited={credited})")
    return SettlementResult(
        session_id=session_id,
        changed=True,
        points=payable,
        credited=credited,
        window_started_at=window_started_at
    )

# utils/session_store.py
from sqlalchemy import update, and_
from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from models import MiningSession, PointsHistory
from utils.mining_service import MAX_SESSION_SECONDS, utcnow
from utils.log_utils import get_logger
from datetime import timedelta

logger = get_logger('mining')


class SessionStore:
    """
    mining_sessions 表的持久化操作
    is_active 是唯一的并发控制标志：所有结算都通过条件更新（CAS）完成
    """

    def __init__(self, clock=utcnow):
        self.clock = clock

    def create_session(self, user_id, now=None):
        session = MiningSession(
            user_id=user_id,
            started_at=now or self.clock(),
            is_active=True,
            recorded_points=0
        )
        db.session.add(session)
        db.session.commit()
        logger.info(f"[session_store] created session {session.id} for user {user_id}")
        return session

    def get_session(self, session_id):
        return db.session.get(MiningSession, session_id)

    def list_active_sessions(self, user_id):
        """按 started_at 倒序返回用户所有进行中的挖矿"""
        return MiningSession.query.filter_by(user_id=user_id, is_active=True)\
            .order_by(MiningSession.started_at.desc(), MiningSession.id.desc()).all()

    def conditional_finalize(self, session_id, payable_points, now=None):
        """
        仅当 is_active 仍为 True 时结束挖矿
        :return: True 表示本次写入生效（只有生效的一方可以入账）
        """
        result = db.session.execute(
            update(MiningSession)
            .where(MiningSession.id == session_id, MiningSession.is_active.is_(True))
            .values(is_active=False, ended_at=now or self.clock(), recorded_points=int(payable_points))
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def reanchor(self, session_id, expected_started_at, now=None):
        """
        领取积分后重置挖矿窗口（同一条记录，保持进行中）
        以原 started_at 为条件，避免多个标签页重复领取同一窗口
        """
        result = db.session.execute(
            update(MiningSession)
            .where(
                MiningSession.id == session_id,
                MiningSession.is_active.is_(True),
                MiningSession.started_at == expected_started_at
            )
            .values(started_at=now or self.clock(), recorded_points=0)
            .execution_options(synchronize_session=False)
        )
        db.session.commit()
        return result.rowcount == 1

    def update_watermark(self, session_id, points):
        """
        尽力写入整数水位（只升不降），失败只记录日志
        """
        try:
            result = db.session.execute(
                update(MiningSession)
                .where(
                    MiningSession.id == session_id,
                    MiningSession.is_active.is_(True),
                    MiningSession.recorded_points < int(points)
                )
                .values(recorded_points=int(points))
                .execution_options(synchronize_session=False)
            )
            db.session.commit()
            return result.rowcount == 1
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.warning(f"[session_store] watermark write failed for session {session_id}: {e}")
            return False

    def list_expired_active_user_ids(self, now=None, limit=100):
        """所有挖矿已超过8小时但仍处于进行中的用户"""
        cutoff = (now or self.clock()) - timedelta(seconds=MAX_SESSION_SECONDS)
        rows = db.session.query(MiningSession.user_id)\
            .filter(MiningSession.is_active.is_(True), MiningSession.started_at <= cutoff)\
            .distinct().limit(limit).all()
        return [row[0] for row in rows]

    def list_uncredited_sessions(self, limit=100):
        """已结束、有积分、但结算窗口没有入账记录的会话（入账失败待补发）"""
        return MiningSession.query.outerjoin(
            PointsHistory,
            and_(
                PointsHistory.session_id == MiningSession.id,
                PointsHistory.window_started_at == MiningSession.started_at
            )
        ).filter(
            MiningSession.is_active.is_(False),
            MiningSession.recorded_points > 0,
            PointsHistory.id.is_(None)
        ).order_by(MiningSession.ended_at.asc()).limit(limit).all()

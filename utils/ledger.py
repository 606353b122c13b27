# utils/ledger.py
from datetime import datetime, timezone
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from extensions import db
from models import UserPoints, PointsHistory
from utils.log_utils import get_logger

logger = get_logger('ledger')


class Ledger:
    """
    积分账本：只追加
    同一 (session_id, window_started_at) 只能入账一次，重复入账直接拒绝
    """

    def has_credit(self, session_id, window_started_at):
        return PointsHistory.query.filter_by(
            session_id=session_id,
            window_started_at=window_started_at
        ).first() is not None

    def credit(self, user_id, amount, session_id, window_started_at=None,
               change_type='mining', description='Mining points'):
        """
        :param amount: 非负整数积分
        :return: True 表示已入账；False 表示金额为0或该窗口已入账
        """
        amount = int(amount)
        if amount < 0:
            raise ValueError(f"credit amount must be non-negative, got {amount}")
        if amount == 0:
            return False

        if session_id is not None and self.has_credit(session_id, window_started_at):
            logger.warning(f"[credit] duplicate credit rejected: session {session_id}, window {window_started_at}")
            return False

        try:
            # 加行级锁查询积分账户
            account = UserPoints.query.filter_by(user_id=user_id).with_for_update().first()
            if not account:
                account = UserPoints(
                    user_id=user_id,
                    total_points=0,
                    mining_points=0,
                    referral_bonus_percentage=0,
                    x_post_boost_percentage=0,
                    daily_streak=0
                )
                db.session.add(account)
                db.session.flush()

            account.total_points = (account.total_points or 0) + amount
            if change_type == 'mining':
                account.mining_points = (account.mining_points or 0) + amount
            account.updated_at = datetime.now(timezone.utc)

            db.session.add(PointsHistory(
                user_id=user_id,
                change_type=change_type,
                change_amount=amount,
                session_id=session_id,
                window_started_at=window_started_at,
                description=description,
                created_at=datetime.now(timezone.utc)
            ))
            db.session.commit()
        except IntegrityError:
            # 并发情况下唯一约束兜底
            db.session.rollback()
            logger.warning(f"[credit] concurrent duplicate credit rejected: session {session_id}")
            return False

        logger.info(f"[credit] +{amount} points to user {user_id} (session {session_id})")
        return True

    def balance(self, user_id):
        account = UserPoints.query.filter_by(user_id=user_id).first()
        return account.total_points if account else 0

    def history(self, user_id, limit=50):
        return PointsHistory.query.filter_by(user_id=user_id)\
            .order_by(PointsHistory.created_at.desc(), PointsHistory.id.desc()).limit(limit).all()

    def credited_total(self, session_id):
        total = db.session.query(func.coalesce(func.sum(PointsHistory.change_amount), 0))\
            .filter(PointsHistory.session_id == session_id).scalar()
        return int(total or 0)

from datetime import datetime, timezone
from sqlalchemy import UniqueConstraint, ForeignKey
from sqlalchemy.orm import relationship
from extensions import db


class UserPoints(db.Model):
    __tablename__ = 'user_points'

    user_id = db.Column(db.String(36), ForeignKey('users.id'), primary_key=True)
    total_points = db.Column(db.Integer, default=0, nullable=False)
    mining_points = db.Column(db.Integer, default=0, nullable=False)
    # 加成来源（百分比）
    referral_bonus_percentage = db.Column(db.Float, default=0, nullable=False)
    x_post_boost_percentage = db.Column(db.Float, default=0, nullable=False)
    daily_streak = db.Column(db.Integer, default=0, nullable=False)
    updated_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    user = relationship("User", back_populates="points_account")


class PointsHistory(db.Model):
    # 积分账本：只追加，不修改不删除
    __tablename__ = 'points_history'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    change_type = db.Column(db.String(60), nullable=False)
    change_amount = db.Column(db.Integer, nullable=False)
    session_id = db.Column(db.Integer, db.ForeignKey('mining_sessions.id'), nullable=True)
    # 挖矿窗口起点：与 session_id 一起作为幂等键
    window_started_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    description = db.Column(db.String(255), nullable=True)

    user = db.relationship('User', backref='points_history')

    __table_args__ = (
        UniqueConstraint('session_id', 'window_started_at', name='uix_session_window'),
    )

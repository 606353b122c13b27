from datetime import datetime
from extensions import db


class MiningSession(db.Model):
    __tablename__ = 'mining_sessions'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    started_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)  # 计时锚点（UTC）
    ended_at = db.Column(db.DateTime, nullable=True)  # 结算时设置，只设置一次
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    recorded_points = db.Column(db.Integer, default=0, nullable=False)  # 已持久化的整数积分水位

    user = db.relationship('User', back_populates='mining_sessions')

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'ended_at': self.ended_at.isoformat() if self.ended_at else None,
            'is_active': self.is_active,
            'recorded_points': self.recorded_points,
        }


class MiningSettings(db.Model):
    __tablename__ = 'mining_settings'

    id = db.Column(db.Integer, primary_key=True)
    public_mining_enabled = db.Column(db.Boolean, default=True, nullable=False)  # 管理员可关闭公开挖矿

from datetime import datetime, timezone
from sqlalchemy import ForeignKey
from extensions import db


class XProfile(db.Model):
    __tablename__ = 'x_profiles'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), ForeignKey('users.id'), nullable=False, unique=True)
    username = db.Column(db.String(64), nullable=True)
    boost_percentage = db.Column(db.Float, default=0, nullable=False)
    scanned_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))


class ArenaBoost(db.Model):
    # 竞技场奖励加成，过期后不再计入
    __tablename__ = 'arena_boosts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), ForeignKey('users.id'), nullable=False, index=True)
    boost_percentage = db.Column(db.Float, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))


class NexusBoost(db.Model):
    # 只有已领取（claimed）且未过期的才计入
    __tablename__ = 'nexus_boosts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.String(36), ForeignKey('users.id'), nullable=False, index=True)
    boost_percentage = db.Column(db.Float, nullable=False)
    claimed = db.Column(db.Boolean, default=False, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

import uuid
from extensions import db
from sqlalchemy.orm import relationship
from datetime import datetime, timezone


class User(db.Model):
    # 挖矿用户记录（认证由外部提供，这里只保留身份）
    __tablename__ = 'users'
    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    username = db.Column(db.String(64), unique=True, nullable=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    points_account = relationship("UserPoints", uselist=False, back_populates="user")
    mining_sessions = relationship("MiningSession", back_populates="user")

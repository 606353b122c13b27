# utils/boost_feeds.py
from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from models import UserPoints, XProfile, ArenaBoost, NexusBoost, MiningSettings
from utils.mining_service import TimedBoost, RateComposer, utcnow
from utils.log_utils import get_logger

logger = get_logger('mining')


def _read_feed(name, loader, default):
    # 单个数据源失败时按 0 计入，不阻塞挖矿
    try:
        return loader()
    except SQLAlchemyError as e:
        db.session.rollback()
        logger.warning(f"[boost_feeds] feed {name} unavailable, using default: {e}")
        return default


def load_boost_feeds(user_id, now=None):
    """
    从数据库读取用户的各项加成
    :return: dict，可直接传给 RateComposer.update(**feeds)
    """
    now = now or utcnow()

    def points_row():
        return UserPoints.query.filter_by(user_id=user_id).first()

    def x_profile():
        profile = XProfile.query.filter_by(user_id=user_id).first()
        return profile.boost_percentage if profile else 0

    def arena():
        rows = ArenaBoost.query.filter(
            ArenaBoost.user_id == user_id,
            ArenaBoost.expires_at > now
        ).all()
        return tuple(TimedBoost(r.boost_percentage, r.expires_at) for r in rows)

    def nexus():
        rows = NexusBoost.query.filter(
            NexusBoost.user_id == user_id,
            NexusBoost.claimed.is_(True),
            NexusBoost.expires_at > now
        ).all()
        return tuple(TimedBoost(r.boost_percentage, r.expires_at) for r in rows)

    account = _read_feed('user_points', points_row, None)

    return {
        'referral_pct': account.referral_bonus_percentage if account else 0,
        'x_post_pct': account.x_post_boost_percentage if account else 0,
        'streak_days': account.daily_streak if account else 0,
        'x_profile_pct': _read_feed('x_profile', x_profile, 0),
        'arena_boosts': _read_feed('arena_boosts', arena, ()),
        'nexus_boosts': _read_feed('nexus_boosts', nexus, ()),
    }


def refresh_composer(composer, user_id):
    """重新读取加成并推送给 RateComposer（有变化时会通知订阅者）"""
    return composer.update(**load_boost_feeds(user_id, composer.clock()))


def build_rate_composer(user_id, clock=utcnow):
    composer = RateComposer(clock=clock)
    refresh_composer(composer, user_id)
    return composer


def is_public_mining_enabled():
    """读取挖矿开关；读取失败或未配置时视为开启"""
    settings = _read_feed('mining_settings', lambda: MiningSettings.query.first(), None)
    if settings is None:
        return True
    return bool(settings.public_mining_enabled)

"""
Loading boost feeds from the database.
"""
from datetime import timedelta

from sqlalchemy.exc import OperationalError

from extensions import db
from models import ArenaBoost, MiningSettings, NexusBoost, UserPoints, XProfile
from utils import boost_feeds
from utils.boost_feeds import build_rate_composer, is_public_mining_enabled, load_boost_feeds


def test_new_user_has_no_boosts(user, clock):
    feeds = load_boost_feeds(user.id, clock())
    assert feeds['referral_pct'] == 0
    assert feeds['arena_boosts'] == ()
    assert build_rate_composer(user.id, clock).rate_per_hour == 10


def test_feeds_loaded_from_each_source(user, clock):
    now = clock()
    db.session.add_all([
        UserPoints(user_id=user.id, referral_bonus_percentage=10, x_post_boost_percentage=15, daily_streak=5),
        XProfile(user_id=user.id, boost_percentage=20),
        ArenaBoost(user_id=user.id, boost_percentage=25, expires_at=now + timedelta(hours=3)),
        ArenaBoost(user_id=user.id, boost_percentage=99, expires_at=now - timedelta(minutes=1)),
        NexusBoost(user_id=user.id, boost_percentage=5, claimed=True, expires_at=now + timedelta(days=1)),
        NexusBoost(user_id=user.id, boost_percentage=40, claimed=False, expires_at=now + timedelta(days=1)),
    ])
    db.session.commit()

    composer = build_rate_composer(user.id, clock)

    assert composer.breakdown() == {
        'referral': 10, 'x_profile': 20, 'x_post': 15, 'arena': 25, 'nexus': 5, 'streak': 5,
    }
    assert composer.total_boost == 80
    assert composer.rate_per_hour == 18


def test_failing_feed_counts_as_zero(user, clock, monkeypatch):
    db.session.add(UserPoints(user_id=user.id, referral_bonus_percentage=30))
    db.session.commit()

    def broken():
        raise OperationalError('SELECT x_profiles', {}, Exception('timeout'))

    real_read = boost_feeds._read_feed
    monkeypatch.setattr(
        boost_feeds, '_read_feed',
        lambda name, loader, default: real_read(name, broken if name == 'x_profile' else loader, default)
    )

    feeds = load_boost_feeds(user.id, clock())

    assert feeds['x_profile_pct'] == 0
    assert feeds['referral_pct'] == 30


def test_public_mining_switch(app):
    assert is_public_mining_enabled() is True

    settings = MiningSettings(public_mining_enabled=False)
    db.session.add(settings)
    db.session.commit()
    assert is_public_mining_enabled() is False

    settings.public_mining_enabled = True
    db.session.commit()
    assert is_public_mining_enabled() is True

import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable, List, Tuple

from utils.log_utils import get_logger

logger = get_logger('mining')

BASE_RATE = 10  # 每小时基础积分
RATE_CAP = 60  # 每小时积分上限
MAX_BOOST_PCT = 500
MAX_STREAK_BOOST = 30
MAX_SESSION_HOURS = 8
MAX_SESSION_SECONDS = MAX_SESSION_HOURS * 3600
MAX_SESSION_POINTS = RATE_CAP * MAX_SESSION_HOURS  # 480


def utcnow():
    """当前 UTC 时间（naive，与数据库存储一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class TimedBoost:
    pct: float
    expires_at: datetime


@dataclass(frozen=True)
class BoostState:
    referral_pct: float = 0
    x_profile_pct: float = 0
    x_post_pct: float = 0
    arena_boosts: Tuple[TimedBoost, ...] = ()
    nexus_boosts: Tuple[TimedBoost, ...] = ()
    streak_days: int = 0


def _pct(value):
    # 缺失或异常的数据源按 0 计
    if value is None:
        return 0.0
    return max(0.0, float(value))


def _active_sum(boosts, now):
    return sum(_pct(b.pct) for b in boosts or () if b.expires_at > now)


def boost_breakdown(state, now):
    """
    计算各加成来源的明细
    :param state: BoostState
    :param now: 当前时间，用于过滤已过期的竞技场/nexus加成
    :return: {来源: 百分比}
    """
    return {
        'referral': _pct(state.referral_pct),
        'x_profile': _pct(state.x_profile_pct),
        'x_post': _pct(state.x_post_pct),
        'arena': _active_sum(state.arena_boosts, now),
        'nexus': _active_sum(state.nexus_boosts, now),
        'streak': float(min(max(int(state.streak_days or 0), 0), MAX_STREAK_BOOST)),
    }


def compose_total_boost(state, now):
    return min(sum(boost_breakdown(state, now).values()), MAX_BOOST_PCT)


def compose_rate(state, now):
    """每小时积分速率，范围 [BASE_RATE, RATE_CAP]"""
    total_boost = compose_total_boost(state, now)
    return min(BASE_RATE * (1 + total_boost / 100), RATE_CAP)


def elapsed_seconds(started_at, now):
    return max(0.0, (now - started_at).total_seconds())


def accrued(started_at, now, rate_per_hour):
    """
    根据开始时间计算本次挖矿累计积分（最多8小时，最多480分）
    每次都按真实经过的时间重新计算，不按 tick 累加
    """
    elapsed = min(elapsed_seconds(started_at, now), MAX_SESSION_SECONDS)
    return min(MAX_SESSION_POINTS, (elapsed / 3600) * rate_per_hour)


def payable_points(started_at, now, rate_per_hour):
    return int(math.floor(accrued(started_at, now, rate_per_hour)))


def expired_cap_points(rate_per_hour):
    """整段8小时挖满时应得的整数积分"""
    return int(math.floor(min(MAX_SESSION_POINTS, MAX_SESSION_HOURS * rate_per_hour)))


@dataclass
class RateComposer:
    """
    Holds the current boost state and recomposes the rate whenever a feed
    changes. Listeners are called with ``(rate_per_hour, total_boost)`` only
    when the composed rate actually moves.
    """
    state: BoostState = field(default_factory=BoostState)
    clock: Callable[[], datetime] = utcnow
    _listeners: List[Callable] = field(default_factory=list, repr=False)

    @property
    def total_boost(self):
        return compose_total_boost(self.state, self.clock())

    @property
    def rate_per_hour(self):
        return compose_rate(self.state, self.clock())

    def breakdown(self):
        return boost_breakdown(self.state, self.clock())

    def subscribe(self, callback):
        self._listeners.append(callback)

        def unsubscribe():
            if callback in self._listeners:
                self._listeners.remove(callback)
        return unsubscribe

    def update(self, **feeds):
        before = self.rate_per_hour
        normalized = {}
        for name, value in feeds.items():
            if name in ('arena_boosts', 'nexus_boosts'):
                value = tuple(value or ())
            normalized[name] = value
        self.state = replace(self.state, **normalized)
        after = self.rate_per_hour
        if after != before:
            logger.debug(f"[rate] {before:.2f} -> {after:.2f} pts/h, boost={self.total_boost:.0f}%")
            for listener in list(self._listeners):
                listener(after, self.total_boost)
        return after

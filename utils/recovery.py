# utils/recovery.py
"""
Startup reconciliation of mining sessions.

ExpirySweep credits sessions that ran past the 8 hour cap while no client was
around; RecoveryResolver then repairs duplicate active sessions and hands the
newest one back to the AccrualController. Both finalize through the same
conditional update, so running them again (remounts, several tabs, the
scheduler) never credits a session twice.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from utils.mining_service import (
    MAX_SESSION_SECONDS, accrued, elapsed_seconds, expired_cap_points,
    payable_points, utcnow
)
from utils.settlement import finalize_session, SettlementResult
from utils.log_utils import get_logger

logger = get_logger('mining')


@dataclass
class RecoveryReport:
    total_points: int = 0
    sessions_reconciled: int = 0
    settlements: List[SettlementResult] = field(default_factory=list)
    resumed_session_id: Optional[int] = None

    def add(self, result):
        if not result.changed:
            return
        self.sessions_reconciled += 1
        self.total_points += result.points
        self.settlements.append(result)

    def merge(self, other):
        for result in other.settlements:
            self.add(result)
        if other.resumed_session_id is not None:
            self.resumed_session_id = other.resumed_session_id
        return self

    def notices(self):
        # 前端一次性提示：“你从上一次挖矿中获得了 N 积分”
        return [
            f"You earned {r.points} ARX-P from a previous mining session"
            for r in self.settlements if r.points > 0
        ]

    def to_dict(self):
        return {
            'total_points': self.total_points,
            'sessions_reconciled': self.sessions_reconciled,
            'resumed_session_id': self.resumed_session_id,
            'sessions': [
                {'session_id': r.session_id, 'points': r.points, 'credited': r.credited}
                for r in self.settlements
            ],
            'notices': self.notices(),
        }


class ExpirySweep:
    """
    找出离线期间已挖满8小时的会话并补发积分
    注意：使用的是 *当前* 的加成速率，而不是会话进行期间的速率
    """

    def __init__(self, store, ledger, rate_composer, clock=utcnow):
        self.store = store
        self.ledger = ledger
        self.rate_composer = rate_composer
        self.clock = clock

    def run(self, user_id):
        report = RecoveryReport()
        now = self.clock()
        rate = self.rate_composer.rate_per_hour

        for session in self.store.list_active_sessions(user_id):
            if elapsed_seconds(session.started_at, now) < MAX_SESSION_SECONDS:
                continue
            final_points = max(expired_cap_points(rate), int(session.recorded_points or 0))
            result = finalize_session(
                self.store, self.ledger, user_id, session.id, final_points, now,
                window_started_at=session.started_at
            )
            report.add(result)

        if report.sessions_reconciled:
            logger.info(
                f"[expiry_sweep] user {user_id}: {report.sessions_reconciled} expired sessions, "
                f"{report.total_points} points recovered"
            )
        return report


class RecoveryResolver:
    """启动时处理重复 / 过期的进行中会话，最新的一条交给 AccrualController 继续"""

    def __init__(self, store, ledger, rate_composer, clock=utcnow):
        self.store = store
        self.ledger = ledger
        self.rate_composer = rate_composer
        self.clock = clock

    def _settle(self, user_id, session, now, rate):
        payable = max(payable_points(session.started_at, now, rate), int(session.recorded_points or 0))
        return finalize_session(
            self.store, self.ledger, user_id, session.id, payable, now,
            window_started_at=session.started_at
        )

    def resolve(self, controller):
        user_id = controller.user_id
        report = RecoveryReport()
        sessions = self.store.list_active_sessions(user_id)
        if not sessions:
            return report

        now = self.clock()
        rate = self.rate_composer.rate_per_hour
        latest, older = sessions[0], sessions[1:]

        if older:
            logger.warning(f"[recovery] user {user_id} has {len(sessions)} active sessions, finalizing {len(older)} older")
        for session in older:
            report.add(self._settle(user_id, session, now, rate))

        if elapsed_seconds(latest.started_at, now) >= MAX_SESSION_SECONDS:
            report.add(self._settle(user_id, latest, now, rate))
            controller.reset()
            return report

        computed = accrued(latest.started_at, now, rate)
        controller.resume(latest, computed_points=computed)
        report.resumed_session_id = latest.id
        return report


def run_startup_recovery(controller, sweep, resolver):
    """登录后只执行一次：先补发过期会话，再处理重复会话并恢复计时"""
    report = sweep.run(controller.user_id)
    report.merge(resolver.resolve(controller))
    return report

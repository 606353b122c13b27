# utils/accrual_controller.py
import math
from dataclasses import dataclass, field
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from utils.mining_service import (
    MAX_SESSION_SECONDS, accrued, elapsed_seconds, payable_points, utcnow
)
from utils.settlement import finalize_session, SettlementResult
from utils.recovery import ExpirySweep, RecoveryResolver, run_startup_recovery
from utils.log_utils import get_logger

logger = get_logger('mining')

DEFAULT_WATERMARK_WRITE_INTERVAL = 15  # 秒


class MiningError(Exception):
    status_code = 400


class MiningDisabledError(MiningError):
    status_code = 403

    def __init__(self, message='Public mining is currently disabled'):
        super().__init__(message)


class NoActiveSessionError(MiningError):
    def __init__(self, message='No active mining session found'):
        super().__init__(message)


@dataclass
class StartResult:
    session: object
    resumed: bool = False  # 本控制器已在挖矿，直接返回当前会话
    settlements: List[SettlementResult] = field(default_factory=list)


@dataclass
class TickResult:
    points: float
    elapsed_seconds: float
    finalized: bool = False
    settlement: Optional[SettlementResult] = None


@dataclass
class ClaimResult:
    status: str  # claimed / nothing_to_claim / conflict / finalized
    points: int = 0
    credited: bool = False
    session_id: Optional[int] = None


class AccrualController:
    """
    Owns the live mining session of one user.

    Idle -> Active (start) -> Idle (stop / expiry); claim() re-anchors the
    active session in place. Points are always recomputed from started_at,
    the persisted recorded_points is only a write-behind watermark that may
    lag the in-memory value.
    """

    def __init__(self, user_id, store, ledger, rate_composer, clock=utcnow,
                 watermark_write_interval=DEFAULT_WATERMARK_WRITE_INTERVAL, mining_enabled=None):
        self.user_id = user_id
        self.store = store
        self.ledger = ledger
        self.rate_composer = rate_composer
        self.clock = clock
        self.watermark_write_interval = watermark_write_interval
        self.mining_enabled = mining_enabled or (lambda: True)

        self.session_id = None
        self.started_at = None
        self.watermark = 0
        self._last_write_at = None
        self._startup_report = None
        self._unsubscribe = rate_composer.subscribe(self._on_rate_change)

    # ---- 状态 ----

    @property
    def is_mining(self):
        return self.session_id is not None

    @property
    def rate_per_hour(self):
        return self.rate_composer.rate_per_hour

    @property
    def total_boost(self):
        return self.rate_composer.total_boost

    def current_points(self, now=None):
        if not self.is_mining:
            return 0.0
        now = now or self.clock()
        # 显示值不低于已持久化的水位
        return max(accrued(self.started_at, now, self.rate_per_hour), float(self.watermark))

    def elapsed_seconds(self, now=None):
        if not self.is_mining:
            return 0.0
        return min(elapsed_seconds(self.started_at, now or self.clock()), MAX_SESSION_SECONDS)

    def remaining_seconds(self, now=None):
        if not self.is_mining:
            return 0.0
        return max(0.0, MAX_SESSION_SECONDS - self.elapsed_seconds(now))

    def reset(self):
        self.session_id = None
        self.started_at = None
        self.watermark = 0
        self._last_write_at = None

    def resume(self, session, computed_points=None):
        """恢复一条进行中的会话；计算值高于水位时顺便抬高水位"""
        self.session_id = session.id
        self.started_at = session.started_at
        self.watermark = int(session.recorded_points or 0)
        self._last_write_at = None

        if computed_points is None:
            computed_points = accrued(self.started_at, self.clock(), self.rate_per_hour)
        whole = int(math.floor(computed_points))
        if whole > self.watermark and self.store.update_watermark(self.session_id, whole):
            self.watermark = whole

    def sync(self):
        """
        按数据库中的最新会话刷新本地状态
        同一用户的其他进行中会话按各自经过时间结算；最新一条的过期由 tick/claim 处理
        """
        sessions = self.store.list_active_sessions(self.user_id)
        if not sessions:
            self.reset()
            return None

        latest, older = sessions[0], sessions[1:]
        if older:
            now = self.clock()
            rate = self.rate_per_hour
            logger.warning(f"[controller] user {self.user_id} has {len(sessions)} active sessions, finalizing {len(older)} older")
            for session in older:
                self._settle_other(session, now, rate)
        self.resume(latest)
        return self.session_id

    def _settle_other(self, session, now, rate):
        payable = max(payable_points(session.started_at, now, rate), int(session.recorded_points or 0))
        return finalize_session(
            self.store, self.ledger, self.user_id, session.id, payable, now,
            window_started_at=session.started_at
        )

    def close(self):
        self._unsubscribe()

    def _on_rate_change(self, rate_per_hour, total_boost):
        if self.is_mining:
            logger.info(
                f"[controller] user {self.user_id} rate -> {rate_per_hour:.2f} pts/h "
                f"(boost {total_boost:.0f}%)"
            )

    # ---- 操作 ----

    def start(self):
        if self.is_mining:
            return StartResult(session=self.store.get_session(self.session_id), resumed=True)
        if not self.mining_enabled():
            raise MiningDisabledError()

        now = self.clock()
        rate = self.rate_per_hour
        # 其他标签页/设备遗留的会话（包括离线期间已过期的）先结算，不能丢弃
        settlements = [
            self._settle_other(session, now, rate)
            for session in self.store.list_active_sessions(self.user_id)
        ]

        session = self.store.create_session(self.user_id, now)
        self.session_id = session.id
        self.started_at = now
        self.watermark = 0
        self._last_write_at = None
        logger.info(f"[controller] user {self.user_id} started session {session.id}")
        return StartResult(session=session, settlements=settlements)

    def tick(self):
        if not self.is_mining:
            return None

        now = self.clock()
        points = self.current_points(now)
        elapsed = elapsed_seconds(self.started_at, now)

        if elapsed >= MAX_SESSION_SECONDS:
            settlement = self.finalize(int(math.floor(points)), now)
            return TickResult(points=points, elapsed_seconds=MAX_SESSION_SECONDS, finalized=True, settlement=settlement)

        whole = int(math.floor(points))
        if whole > self.watermark and self._write_due(now):
            self._last_write_at = now
            self.store.update_watermark(self.session_id, whole)
            self.watermark = whole
        return TickResult(points=points, elapsed_seconds=elapsed)

    def _write_due(self, now):
        if self._last_write_at is None:
            return True
        return (now - self._last_write_at).total_seconds() >= self.watermark_write_interval

    def claim(self):
        if not self.is_mining:
            raise NoActiveSessionError()

        now = self.clock()
        session_id = self.session_id
        if elapsed_seconds(self.started_at, now) >= MAX_SESSION_SECONDS:
            settlement = self.finalize(int(math.floor(self.current_points(now))), now)
            return ClaimResult(
                status='finalized',
                points=settlement.points if settlement.changed else 0,
                credited=settlement.credited,
                session_id=session_id
            )

        payable = int(math.floor(self.current_points(now)))
        if payable <= 0:
            return ClaimResult(status='nothing_to_claim', session_id=session_id)

        window_started_at = self.started_at
        if not self.store.reanchor(session_id, window_started_at, now):
            # 另一个客户端已领取或结束了这个窗口
            logger.info(f"[controller] claim conflict on session {session_id}, resyncing")
            self.sync()
            return ClaimResult(status='conflict', session_id=session_id)

        self.started_at = now
        self.watermark = 0
        self._last_write_at = None

        credited = False
        try:
            credited = self.ledger.credit(self.user_id, payable, session_id, window_started_at=window_started_at)
        except SQLAlchemyError as e:
            db.session.rollback()
            logger.critical(
                f"[claim] session {session_id} re-anchored but credit FAILED: user={self.user_id} "
                f"points={payable} window={window_started_at} -> needs manual backfill: {e}"
            )
        return ClaimResult(status='claimed', points=payable, credited=credited, session_id=session_id)

    def stop(self):
        if not self.is_mining:
            raise NoActiveSessionError()
        now = self.clock()
        return self.finalize(int(math.floor(self.current_points(now))), now)

    def finalize(self, payable, now=None):
        settlement = finalize_session(
            self.store, self.ledger, self.user_id, self.session_id, payable, now or self.clock(),
            window_started_at=self.started_at
        )
        if not settlement.failed:
            self.reset()
        return settlement

    def run_startup_recovery(self):
        """每个控制器只执行一次，重复调用返回第一次的结果"""
        if self._startup_report is None:
            sweep = ExpirySweep(self.store, self.ledger, self.rate_composer, self.clock)
            resolver = RecoveryResolver(self.store, self.ledger, self.rate_composer, self.clock)
            self._startup_report = run_startup_recovery(self, sweep, resolver)
        return self._startup_report

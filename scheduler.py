from apscheduler.schedulers.background import BackgroundScheduler
from extensions import db
from utils.boost_feeds import build_rate_composer
from utils.ledger import Ledger
from utils.mining_service import utcnow
from utils.recovery import ExpirySweep
from utils.session_store import SessionStore
from utils.log_utils import get_logger

scheduler = BackgroundScheduler()

logger = get_logger('scheduler')


# 结算所有已挖满8小时但客户端没有回来的会话
def sweep_stale_sessions(app, batch_size=None, clock=None):
    with app.app_context():
        clock = clock or app.config.get('MINING_CLOCK') or utcnow
        batch_size = batch_size or app.config.get('MINING_SWEEP_BATCH_SIZE', 100)
        summary = {'users': 0, 'sessions': 0, 'total_points': 0}
        try:
            store = SessionStore(clock)
            ledger = Ledger()
            user_ids = store.list_expired_active_user_ids(clock(), limit=batch_size)

            for user_id in user_ids:
                # 按用户当前的加成速率结算
                composer = build_rate_composer(user_id, clock)
                report = ExpirySweep(store, ledger, composer, clock).run(user_id)
                summary['users'] += 1
                summary['sessions'] += report.sessions_reconciled
                summary['total_points'] += report.total_points

            logger.info(
                f"[sweep_stale_sessions] {summary['sessions']} sessions settled for "
                f"{summary['users']} users, {summary['total_points']} points"
            )
            return summary

        except Exception:
            db.session.rollback()
            logger.exception("[sweep_stale_sessions] Settling expired sessions failed")
            return None


# 补发：会话已结束但入账失败（结束成功后无法自动重试）
def backfill_uncredited_sessions(app, limit=None, dry_run=False):
    with app.app_context():
        limit = min(limit or app.config.get('MINING_BACKFILL_LIMIT', 100), 500)
        summary = {'total_sessions': 0, 'credited': 0, 'total_points': 0, 'dry_run': dry_run, 'results': []}
        try:
            store = SessionStore()
            ledger = Ledger()
            sessions = store.list_uncredited_sessions(limit=limit)
            summary['total_sessions'] = len(sessions)

            for session in sessions:
                points = int(session.recorded_points or 0)
                if dry_run:
                    summary['results'].append({'session_id': session.id, 'points': points, 'status': 'skipped'})
                    summary['total_points'] += points
                    continue

                credited = ledger.credit(
                    session.user_id, points, session.id,
                    window_started_at=session.started_at,
                    description='Mining points backfill'
                )
                status = 'credited' if credited else 'skipped'
                summary['results'].append({'session_id': session.id, 'points': points, 'status': status})
                if credited:
                    summary['credited'] += 1
                    summary['total_points'] += points

            logger.info(
                f"[backfill] {summary['credited']}/{summary['total_sessions']} sessions credited, "
                f"{summary['total_points']} points (dry_run={dry_run})"
            )
            return summary

        except Exception:
            db.session.rollback()
            logger.exception("[backfill] Backfill of uncredited sessions failed")
            return None


def start_scheduler(app):
    if not app.config.get('MINING_SCHEDULER_ENABLED', True):
        logger.info("Scheduler disabled by MINING_SCHEDULER_ENABLED")
        return

    interval = app.config.get('MINING_SWEEP_INTERVAL_MINUTES', 5)
    scheduler.add_job(lambda: sweep_stale_sessions(app), 'interval', minutes=interval)
    # 每小时补发一次入账失败的会话
    scheduler.add_job(lambda: backfill_uncredited_sessions(app), 'interval', hours=1)

    scheduler.start()
    logger.info(f"Scheduler started: stale session sweep every {interval}min, backfill every 1h")

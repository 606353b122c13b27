from flask import Blueprint, jsonify, current_app, g
from sqlalchemy.exc import SQLAlchemyError
from extensions import db
from models import User
from utils.auth_utils import jwt_required
from utils.accrual_controller import AccrualController, MiningError
from utils.boost_feeds import build_rate_composer, is_public_mining_enabled
from utils.ledger import Ledger
from utils.mining_service import MAX_SESSION_SECONDS, utcnow
from utils.session_store import SessionStore
from utils.log_utils import get_logger

mining_bp = Blueprint('mining', __name__, url_prefix='/api/mining')

logger = get_logger('mining')


def ensure_user(user_id):
    user = db.session.get(User, user_id)
    if not user:
        user = User(id=user_id)
        db.session.add(user)
        db.session.commit()
    return user


def build_controller(user_id):
    """每个请求按当前用户构建控制器（时钟可通过 MINING_CLOCK 注入）"""
    clock = current_app.config.get('MINING_CLOCK') or utcnow
    return AccrualController(
        user_id,
        SessionStore(clock),
        Ledger(),
        build_rate_composer(user_id, clock),
        clock=clock,
        watermark_write_interval=current_app.config.get('MINING_WATERMARK_WRITE_INTERVAL', 15),
        mining_enabled=is_public_mining_enabled
    )


def status_payload(controller, tick=None):
    now = controller.clock()
    payload = {
        'isMining': controller.is_mining,
        'sessionId': controller.session_id,
        'startedAt': controller.started_at.isoformat() if controller.started_at else None,
        'elapsedSeconds': int(controller.elapsed_seconds(now)),
        'remainingSeconds': int(controller.remaining_seconds(now)),
        'maxSessionSeconds': MAX_SESSION_SECONDS,
        'earnedPoints': round(controller.current_points(now), 4),
        'ratePerHour': controller.rate_per_hour,
        'totalBoost': controller.total_boost,
        'boosts': controller.rate_composer.breakdown(),
    }
    if tick is not None and tick.finalized:
        payload['justFinalized'] = {
            'sessionId': tick.settlement.session_id,
            'points': tick.settlement.points if tick.settlement.changed else 0,
        }
    return payload


@mining_bp.errorhandler(MiningError)
def handle_mining_error(e):
    return jsonify({'error': str(e)}), e.status_code


@mining_bp.errorhandler(SQLAlchemyError)
def handle_db_error(e):
    db.session.rollback()
    logger.error(f"[mining_bp] database error: {e}")
    return jsonify({'error': 'Database error'}), 500


@mining_bp.route('/status', methods=['GET'])
@jwt_required
def mining_status():
    ensure_user(g.current_user_id)
    controller = build_controller(g.current_user_id)
    controller.sync()
    tick = controller.tick()
    return jsonify(status_payload(controller, tick))


@mining_bp.route('/start', methods=['POST'])
@jwt_required
def mining_start():
    ensure_user(g.current_user_id)
    # 不恢复已有会话：start() 先结算该用户所有进行中的会话，再开新会话
    controller = build_controller(g.current_user_id)
    result = controller.start()

    return jsonify({
        'message': 'Mining started',
        'session': result.session.to_dict(),
        'settledSessions': [
            {'sessionId': s.session_id, 'points': s.points}
            for s in result.settlements if s.changed
        ],
        'ratePerHour': controller.rate_per_hour,
    })


@mining_bp.route('/stop', methods=['POST'])
@jwt_required
def mining_stop():
    controller = build_controller(g.current_user_id)
    controller.sync()
    elapsed = controller.elapsed_seconds()
    settlement = controller.stop()

    if settlement.failed:
        return jsonify({'error': 'Failed to stop mining, please retry'}), 500

    return jsonify({
        'message': 'Mining stopped',
        'earned_points': settlement.points if settlement.changed else 0,
        'credited': settlement.credited,
        'duration_seconds': int(elapsed),
        # 含本会话期间所有 claim 的入账
        'session_total_points': controller.ledger.credited_total(settlement.session_id),
    })


@mining_bp.route('/claim', methods=['POST'])
@jwt_required
def mining_claim():
    controller = build_controller(g.current_user_id)
    controller.sync()
    result = controller.claim()

    if result.status == 'nothing_to_claim':
        return jsonify({'error': 'Nothing to claim', 'points': 0}), 400
    if result.status == 'conflict':
        return jsonify({'error': 'Session changed by another client, please retry', 'points': 0}), 409

    return jsonify({
        'message': 'Points claimed' if result.status == 'claimed' else 'Mining session complete',
        'status': result.status,
        'points': result.points,
        'credited': result.credited,
        'session_id': result.session_id,
    })


@mining_bp.route('/recover', methods=['POST'])
@jwt_required
def mining_recover():
    ensure_user(g.current_user_id)
    controller = build_controller(g.current_user_id)
    report = controller.run_startup_recovery()
    payload = report.to_dict()
    payload['status'] = status_payload(controller)
    return jsonify(payload)

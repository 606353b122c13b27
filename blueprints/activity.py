from flask import Blueprint, jsonify, request, g
from utils.auth_utils import jwt_required
from utils.ledger import Ledger

activity_bp = Blueprint('activity', __name__, url_prefix='/api/points')


@activity_bp.route('/total', methods=['GET'])
@jwt_required
def get_total_points():
    ledger = Ledger()
    return jsonify({'total_points': ledger.balance(g.current_user_id)})


@activity_bp.route('/history', methods=['GET'])
@jwt_required
def get_points_history():
    try:
        limit = min(int(request.args.get('limit', 50)), 200)
    except ValueError:
        return jsonify({'error': 'Invalid limit'}), 400

    history = Ledger().history(g.current_user_id, limit=limit)

    return jsonify([
        {
            'change_type': record.change_type,
            'change_amount': record.change_amount,
            'session_id': record.session_id,
            'description': record.description,
            'created_at': record.created_at.isoformat() if record.created_at else None
        }
        for record in history
    ])

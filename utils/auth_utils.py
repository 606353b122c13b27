# auth_utils.py
import jwt
from flask import request, jsonify, current_app, g
from functools import wraps


def jwt_required(f):
    @wraps(f)
    def decorated_function(*args, **kwargs):
        # 从请求头获取 Authorization: Bearer <token>
        auth_header = request.headers.get('Authorization', None)
        if auth_header and auth_header.startswith('Bearer '):
            token = auth_header.split(' ')[1]
        else:
            return jsonify({'success': False, 'message': 'Missing authorization token'}), 401

        try:
            payload = jwt.decode(token, current_app.config['JWT_SECRET'], algorithms=['HS256'])
        except jwt.ExpiredSignatureError:
            return jsonify({'success': False, 'message': 'Authorization token expired'}), 401
        except jwt.InvalidTokenError:
            return jsonify({'success': False, 'message': 'Invalid authorization token'}), 401

        user_id = payload.get('user_id') or payload.get('sub')
        if not user_id:
            return jsonify({'success': False, 'message': 'Token carries no user id'}), 401

        # 把用户信息放入上下文
        g.current_user_id = str(user_id)
        return f(*args, **kwargs)
    return decorated_function


def issue_token(user_id, secret, expires_in=None):
    """签发 HS256 令牌（测试和内部工具使用）"""
    from datetime import datetime, timedelta, timezone
    payload = {'user_id': str(user_id)}
    if expires_in:
        payload['exp'] = datetime.now(timezone.utc) + timedelta(seconds=expires_in)
    return jwt.encode(payload, secret, algorithm='HS256')

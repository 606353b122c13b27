from flask import Flask, jsonify
from flask_cors import CORS
from flask_migrate import Migrate
from extensions import db
from dotenv import load_dotenv
import os

# 提前导入模型注册函数（明确显示依赖关系）
from models import register_models

from blueprints.mining import mining_bp
from blueprints.activity import activity_bp

load_dotenv()


def create_app(config_overrides=None):
    app = Flask(__name__)

    # CORS 允许前端携带 Cookie
    CORS(app, supports_credentials=True)

    # ===== 配置 =====
    app.config.update(
        SECRET_KEY=os.getenv('SECRET_KEY'),
        JWT_SECRET=os.getenv('JWT_SECRET'),
        SQLALCHEMY_DATABASE_URI=os.getenv('DB_URI', 'sqlite:///mining.db'),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        MINING_WATERMARK_WRITE_INTERVAL=int(os.getenv('MINING_WATERMARK_WRITE_INTERVAL', '15')),
        MINING_SCHEDULER_ENABLED=os.getenv('MINING_SCHEDULER_ENABLED', 'True') == 'True',
        MINING_SWEEP_INTERVAL_MINUTES=int(os.getenv('MINING_SWEEP_INTERVAL_MINUTES', '5')),
        MINING_SWEEP_BATCH_SIZE=int(os.getenv('MINING_SWEEP_BATCH_SIZE', '100')),
        MINING_BACKFILL_LIMIT=min(int(os.getenv('MINING_BACKFILL_LIMIT', '100')), 500),
        MINING_CLOCK=None
    )
    if config_overrides:
        app.config.update(config_overrides)

    # ===== 初始化扩展 =====
    db.init_app(app)
    Migrate(app, db)

    with app.app_context():
        register_models()  # 确保在应用上下文中注册

    # ===== 注册蓝图 =====
    blueprints = [
        mining_bp,
        activity_bp
    ]
    for bp in blueprints:
        app.register_blueprint(bp)

    # 健康检查
    @app.route('/')
    def health_check():
        return jsonify({'status': 'healthy'})

    return app


if __name__ == '__main__':
    from scheduler import start_scheduler  # 延迟导入
    app = create_app()
    start_scheduler(app)
    app.run(host='0.0.0.0', port=5000)

# 1. 显式导入所有模型类（供__all__和直接引用使用）
from extensions import db

from .user_models import User
from .points_models import UserPoints, PointsHistory
from .boost_models import XProfile, ArenaBoost, NexusBoost
from .mining_models import MiningSession, MiningSettings

# 2. 定义__all__（控制from models import *的行为）
__all__ = [
    'User',
    'UserPoints',
    'PointsHistory',
    'XProfile',
    'ArenaBoost',
    'NexusBoost',
    'MiningSession',
    'MiningSettings',
]


# 3. 显式注册函数（确保Flask-Migrate能发现模型）
def register_models():
    """强制导入所有模型模块（触发SQLAlchemy注册）"""
    from . import user_models
    from . import points_models
    from . import boost_models
    from . import mining_models

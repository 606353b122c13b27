# utils/log_utils.py
import os
import logging

LOG_FORMAT = '[%(asctime)s] %(levelname)s: %(message)s'


def get_logger(name):
    """
    获取命名日志器：控制台输出 + 可选文件输出（LOG_FILE）
    同名日志器只配置一次，避免重复 handler
    """
    logger = logging.getLogger(name)
    if getattr(logger, '_mining_configured', False):
        return logger

    logger.setLevel(os.getenv('LOG_LEVEL', 'INFO').upper())
    formatter = logging.Formatter(LOG_FORMAT)

    # 控制台输出
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # 文件输出
    log_file = os.getenv('LOG_FILE')
    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    # 已有自己的 handler，不再交给 root（gunicorn / basicConfig 下会重复输出）
    logger.propagate = False
    logger._mining_configured = True
    return logger

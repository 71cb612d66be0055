# logger_setup.py
import logging
import os
import sys
from datetime import datetime
from PyQt6.QtCore import QObject, pyqtSignal

# 导入Config类仅用于类型注解
from typing import TYPE_CHECKING
if TYPE_CHECKING:
    from config_loader import Config


class LogSignals(QObject):
    # 携带格式化后的日志字符串和日志级别
    log_message = pyqtSignal(str, int)


class QtLogHandler(logging.Handler):
    """
    将日志记录通过Qt信号发送出去的处理器。
    调试面板通过它显示最近的警告和错误，日志可能来自加载线程，
    信号会自动排队送回GUI线程。
    """
    def __init__(self, signals: LogSignals):
        super().__init__()
        self.signals = signals

    def emit(self, record):
        try:
            msg = self.format(record)
            self.signals.log_message.emit(msg, record.levelno)
        except Exception:
            self.handleError(record)


def setup_logging(config: 'Config', log_dir: str = "logs"):
    """
    配置全局日志系统。

    输出目标：
    1. 命令行 (stdout)
    2. Qt信号 (供调试面板使用)
    3. 文件 (如果配置中启用)

    Args:
        config (Config): 全局配置对象。
        log_dir (str): 日志文件所在的目录。

    Returns:
        LogSignals: 包含信号的对象，需要连接到界面的槽函数上。
    """
    log_level_str = config.log_level.upper()
    log_level = getattr(logging, log_level_str, logging.INFO)

    log_formatter = logging.Formatter('%(asctime)s [%(levelname)-8s] %(threadName)s: %(message)s',
                                      datefmt='%H:%M:%S')

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    # 清除旧处理器，以防重复加载
    root_logger.handlers.clear()

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(log_formatter)
    root_logger.addHandler(stream_handler)

    log_signals = LogSignals()
    signal_handler = QtLogHandler(log_signals)
    signal_handler.setFormatter(log_formatter)
    signal_handler.setLevel(logging.WARNING)
    root_logger.addHandler(signal_handler)

    if config.log_to_file:
        os.makedirs(log_dir, exist_ok=True)
        # 使用时间戳命名日志文件，避免覆盖
        timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
        log_file = os.path.join(log_dir, f"{timestamp}.log")

        file_handler = logging.FileHandler(log_file, encoding='utf-8')
        file_handler.setFormatter(log_formatter)
        root_logger.addHandler(file_handler)

        logging.info(f"日志将保存到: {log_file}")

    logging.info(f"日志系统初始化完成，级别: {log_level_str}")
    return log_signals

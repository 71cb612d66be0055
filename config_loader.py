# config_loader.py
import logging
import configparser

from scheduler_core import RetryPolicy, SchedulerConfig


class Config:
    """
    全局配置管理类，采用单例模式。
    负责加载、保存和提供对 'config.ini' 文件的访问。
    """
    _instance = None

    def __new__(cls, *args, **kwargs):
        """
        实现单例模式。确保全局只有一个Config实例。
        """
        if not cls._instance:
            cls._instance = super(Config, cls).__new__(cls)
        return cls._instance

    def __init__(self, filepath='config.ini'):
        """
        初始化配置类。
        使用 _initialized 标志防止重复初始化。

        Args:
            filepath (str): 配置文件的路径。
        """
        if hasattr(self, '_initialized'):
            return

        self.filepath = filepath
        self.parser = configparser.ConfigParser()

        # 所有配置项的默认值，这使得程序在没有配置文件时也能正常运行
        self._defaults = {
            'Scheduler': {
                'period_ms': '10000',         # 每次请求的弹幕时间窗口
                'duration_ms': '5000',        # 弹幕横穿屏幕的时间
                'prefetch_ahead': '1',
                'seek_threshold_ms': '1000',
                'retry_policy': 'never'       # never / next_tick
            },
            'Display': {
                'font_name': '微软雅黑', 'font_size': '24', 'line_height': '36',
                'stroke_width': '2', 'opacity': '0.85',
                'ontop_strategy': '2'    # 0=不置顶, 1=Qt置顶, 2=Qt置顶+Win32定时强制置顶
            },
            'Source': {'load_latency_ms': '0'},
            'Sync': {'source': 'auto', 'target_aumid': 'PotPlayer64', 'poll_interval_ms': '100'},
            'Debug': {'enabled': 'false', 'info_position': 'bottom_left'},
            'Logging': {'level': 'INFO', 'log_to_file': 'true'},
            'DEFAULT': {'LastDanmakuPath': ''}
        }
        self.load()
        self._initialized = True

    def load(self):
        """
        从 .ini 文件加载配置。
        先加载内置的默认值，再用文件中的值覆盖它们。
        """
        parser = configparser.ConfigParser()
        parser.read_dict(self._defaults)
        parser.read(self.filepath, encoding='utf-8')
        self.parser = parser
        self._load_values()

    def restore_defaults(self):
        """
        将所有设置恢复为内置的默认值，并立即保存到文件。
        """
        logging.info("正在恢复所有设置为默认值...")
        parser = configparser.ConfigParser()
        parser.read_dict(self._defaults)
        self.parser = parser
        self._load_values()
        self.save()

    def _load_values(self):
        """
        私有方法，将 parser 中的配置项读取为强类型的类属性。
        """
        # [Scheduler]
        self.period_ms = self.parser.getint('Scheduler', 'period_ms')
        self.duration_ms = self.parser.getint('Scheduler', 'duration_ms')
        self.prefetch_ahead = self.parser.getint('Scheduler', 'prefetch_ahead')
        self.seek_threshold_ms = self.parser.getint('Scheduler', 'seek_threshold_ms')
        self.retry_policy = self.parser.get('Scheduler', 'retry_policy')
        # [Display]
        self.font_name = self.parser.get('Display', 'font_name')
        self.font_size = self.parser.getint('Display', 'font_size')
        self.line_height = self.parser.getint('Display', 'line_height')
        self.stroke_width = self.parser.getint('Display', 'stroke_width')
        self.opacity = self.parser.getfloat('Display', 'opacity')
        self.ontop_strategy = self.parser.getint('Display', 'ontop_strategy')
        # [Source]
        self.load_latency_ms = self.parser.getint('Source', 'load_latency_ms')
        # [Sync] & [DEFAULT]
        self.sync_source = self.parser.get('Sync', 'source')
        self.target_aumid = self.parser.get('Sync', 'target_aumid')
        self.poll_interval_ms = self.parser.getint('Sync', 'poll_interval_ms')
        self.last_danmaku_path = self.parser.get('DEFAULT', 'LastDanmakuPath')
        # [Debug]
        self.debug = self.parser.getboolean('Debug', 'enabled')
        self.debug_info_position = self.parser.get('Debug', 'info_position')
        # [Logging]
        self.log_level = self.parser.get('Logging', 'level')
        self.log_to_file = self.parser.getboolean('Logging', 'log_to_file')

    def scheduler_config(self) -> SchedulerConfig:
        """
        根据当前配置构建调度器配置。
        配置不合法时抛出 SchedulerConfigError，调度器不会启动。
        """
        return SchedulerConfig(
            period_length=self.period_ms,
            duration=self.duration_ms,
            line_height=self.line_height,
            font_size=self.font_size,
            prefetch_ahead=self.prefetch_ahead,
            seek_threshold=self.seek_threshold_ms,
            retry_policy=RetryPolicy.parse(self.retry_policy),
        )

    def save(self):
        """
        将当前内存中的配置值写回到 .ini 文件中。
        """
        self.parser.set('Scheduler', 'period_ms', str(self.period_ms))
        self.parser.set('Scheduler', 'duration_ms', str(self.duration_ms))
        self.parser.set('Scheduler', 'prefetch_ahead', str(self.prefetch_ahead))
        self.parser.set('Scheduler', 'seek_threshold_ms', str(self.seek_threshold_ms))
        self.parser.set('Scheduler', 'retry_policy', self.retry_policy)

        self.parser.set('Display', 'font_name', self.font_name)
        self.parser.set('Display', 'font_size', str(self.font_size))
        self.parser.set('Display', 'line_height', str(self.line_height))
        self.parser.set('Display', 'stroke_width', str(self.stroke_width))
        self.parser.set('Display', 'opacity', str(self.opacity))
        self.parser.set('Display', 'ontop_strategy', str(self.ontop_strategy))

        self.parser.set('Source', 'load_latency_ms', str(self.load_latency_ms))

        self.parser.set('Sync', 'source', self.sync_source)
        self.parser.set('Sync', 'target_aumid', self.target_aumid)
        self.parser.set('Sync', 'poll_interval_ms', str(self.poll_interval_ms))

        self.parser.set('Debug', 'enabled', str(self.debug).lower())
        self.parser.set('Debug', 'info_position', self.debug_info_position)

        self.parser.set('Logging', 'level', self.log_level)
        self.parser.set('Logging', 'log_to_file', str(self.log_to_file).lower())

        self.parser.set('DEFAULT', 'LastDanmakuPath', self.last_danmaku_path)

        try:
            with open(self.filepath, 'w', encoding='utf-8') as configfile:
                self.parser.write(configfile)
            logging.info(f"配置已成功保存到 {self.filepath}")
        except OSError as e:
            logging.error(f"保存配置失败: {e}")


def get_config():
    """
    全局访问点，用于获取Config的单例实例。
    """
    return Config()

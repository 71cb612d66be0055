# scheduler_core.py
"""
周期调度器的核心逻辑。

调度器被写成一个纯函数 reduce(config, state, event) -> Transition：
每个事件（时钟更新、加载结果、几何信息……）都从上一个状态快照计算出一个新的快照，
并给出需要由外壳执行的副作用（发起加载、挂载/卸载周期画布等）。
这里没有 Qt，也没有 I/O，因此可以脱离渲染层单独测试。
"""
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Mapping

from danmaku_models import CacheStatus, Period, RawItem
from period_cache import PeriodCache


class SchedulerConfigError(ValueError):
    """调度器配置不合法。在调度器启动之前抛出。"""
    pass


class RetryPolicy(Enum):
    NEVER = "never"          # 失败的周期保持为空，除非调用方显式重试
    NEXT_TICK = "next_tick"  # 下一次时钟更新时清除失败记录并重新请求

    @classmethod
    def parse(cls, value: str) -> 'RetryPolicy':
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise SchedulerConfigError(f"未知的重试策略: {value!r}") from None


class SessionState(Enum):
    RUNNING = "running"
    SEEKING = "seeking"  # 只存在于一次更新内部，对外表现为 TimelineReset
    PAUSED = "paused"


class SchedulerConfig:
    """
    调度器在整个生命周期内不变的配置。

    Args:
        period_length (int): 周期长度（毫秒），必须大于0。
        duration (int): 弹幕从右侧移动到左侧所需的时间（毫秒），必须大于0。
        line_height (float): 弹幕行高，必须大于0。
        font_size (float): 弹幕字体大小，必须大于0。
        prefetch_ahead (int): 预加载的周期数。
        seek_threshold (int): 两次时钟更新之间的最大正常间隔（毫秒），超过即视为跳转。
        retry_policy (RetryPolicy): 加载失败后的重试策略。
    """
    def __init__(self, period_length: int, duration: int, line_height: float, font_size: float,
                 prefetch_ahead: int = 1, seek_threshold: int = 1000,
                 retry_policy: RetryPolicy = RetryPolicy.NEVER):
        if period_length <= 0:
            raise SchedulerConfigError(f"周期长度必须大于0，当前为 {period_length}")
        if duration <= 0:
            raise SchedulerConfigError(f"弹幕移动时长必须大于0，当前为 {duration}")
        if line_height <= 0:
            raise SchedulerConfigError(f"行高必须大于0，当前为 {line_height}")
        if font_size <= 0:
            raise SchedulerConfigError(f"字体大小必须大于0，当前为 {font_size}")
        if prefetch_ahead < 0:
            raise SchedulerConfigError(f"预加载周期数不能为负数，当前为 {prefetch_ahead}")
        if seek_threshold < 0:
            raise SchedulerConfigError(f"跳转阈值不能为负数，当前为 {seek_threshold}")
        self.period_length = period_length
        self.duration = duration
        self.line_height = line_height
        self.font_size = font_size
        self.prefetch_ahead = prefetch_ahead
        self.seek_threshold = seek_threshold
        self.retry_policy = retry_policy

    @property
    def retention_span(self) -> float:
        """一个周期在当前周期之后仍可能留在屏幕上的周期数。"""
        return (2 * self.duration) / self.period_length

    def __repr__(self):
        return (f"<SchedulerConfig(period={self.period_length}ms, duration={self.duration}ms, "
                f"prefetch={self.prefetch_ahead}, threshold={self.seek_threshold}ms, "
                f"retry={self.retry_policy.value})>")


# --- 状态 ---

@dataclass(frozen=True)
class RevealedPeriod:
    """已经展示的周期。弹幕在展示时复制出来，缓存淘汰不会影响正在移动的画布。"""
    index: int
    items: tuple[RawItem, ...]
    reveal_time: float


_EMPTY_REVEALED = MappingProxyType({})


@dataclass(frozen=True)
class SchedulerState:
    cache: PeriodCache
    last_time: float | None = None
    current_index: int | None = None
    geometry: tuple[float, float] | None = None
    active: frozenset = frozenset()
    finished: frozenset = frozenset()  # 轨迹已经走完的周期，在离开保留窗口之前不会再次展示
    revealed: Mapping[int, RevealedPeriod] = field(default_factory=lambda: _EMPTY_REVEALED)
    session: SessionState = SessionState.RUNNING
    generation: int = 0

    @classmethod
    def initial(cls, config: SchedulerConfig) -> 'SchedulerState':
        return cls(cache=PeriodCache(config.period_length))


# --- 事件 ---

@dataclass(frozen=True)
class TickOccurred:
    time: float


@dataclass(frozen=True)
class FetchResolved:
    index: int
    token: int
    items: tuple[RawItem, ...] | None = None
    error: str | None = None


@dataclass(frozen=True)
class GeometryResolved:
    width: float
    height: float


@dataclass(frozen=True)
class PeriodFinished:
    index: int


@dataclass(frozen=True)
class PauseChanged:
    paused: bool


@dataclass(frozen=True)
class RetryRequested:
    index: int


# --- 副作用 ---

@dataclass(frozen=True)
class LoadRequested:
    index: int
    start: int
    end: int
    token: int


@dataclass(frozen=True)
class PeriodRevealed:
    index: int
    reveal_time: float


@dataclass(frozen=True)
class PeriodRemoved:
    index: int


@dataclass(frozen=True)
class TimelineReset:
    previous_time: float
    time: float


@dataclass(frozen=True)
class FetchFailed:
    index: int
    error: str


@dataclass(frozen=True)
class PlaybackStateChanged:
    paused: bool


@dataclass(frozen=True)
class Transition:
    state: SchedulerState
    effects: tuple = ()


# --- 纯计算 ---

def is_seek(previous_time: float, time: float, threshold: float) -> bool:
    """时间回退，或者前进超过阈值，都视为用户操作了进度条。"""
    return time < previous_time or time - previous_time > threshold


def load_window(current_index: int, prefetch_ahead: int) -> list[int]:
    return list(range(current_index, current_index + prefetch_ahead + 1))


def is_retained(index: int, current_index: int, retention_span: float) -> bool:
    return index + retention_span >= current_index and index <= current_index


def reduce(config: SchedulerConfig, state: SchedulerState, event) -> Transition:
    """根据一个事件，从旧状态计算出新状态和需要执行的副作用。"""
    effects = []
    if isinstance(event, TickOccurred):
        state = _on_tick(config, state, event.time, effects)
    elif isinstance(event, FetchResolved):
        state = _on_fetch_resolved(state, event, effects)
    elif isinstance(event, GeometryResolved):
        state = _on_geometry(config, state, event, effects)
    elif isinstance(event, PeriodFinished):
        state = _on_period_finished(state, event.index, effects)
    elif isinstance(event, PauseChanged):
        state = _on_pause(state, event.paused, effects)
    elif isinstance(event, RetryRequested):
        state = _on_retry(state, event.index, effects)
    else:
        raise TypeError(f"未知的调度事件: {event!r}")
    return Transition(state, tuple(effects))


def _on_tick(config: SchedulerConfig, state: SchedulerState, time: float, effects: list) -> SchedulerState:
    previous = state.last_time
    if previous is not None and is_seek(previous, time, config.seek_threshold):
        state = _reset(state, previous, time, effects)

    state = replace(state, last_time=time)
    # 在视口尺寸确定之前，只记录时间，不处理任何周期
    if state.geometry is None:
        return state

    state = replace(state, current_index=Period.index_at(time, config.period_length))
    return _schedule(config, state, effects)


def _schedule(config: SchedulerConfig, state: SchedulerState, effects: list) -> SchedulerState:
    current = state.current_index
    cache = state.cache

    load_set = load_window(current, config.prefetch_ahead)
    for index in load_set:
        if cache.status(index) is CacheStatus.FAILED and config.retry_policy is RetryPolicy.NEXT_TICK:
            logging.info(f"周期 {index} 上次加载失败，正在重试...")
            cache = cache.evict([index])
        cache = _request(cache, index, effects)

    doomed = [i for i in cache.indices()
              if i not in load_set and not is_retained(i, current, config.retention_span)]
    cache = cache.evict(doomed)
    finished = frozenset(i for i in state.finished if is_retained(i, current, config.retention_span))

    return _reveal_current(replace(state, cache=cache, finished=finished), effects)


def _request(cache: PeriodCache, index: int, effects: list) -> PeriodCache:
    requested = []
    cache, _ = cache.get_or_request(index, lambda start, end: requested.append((start, end)))
    for start, end in requested:
        effects.append(LoadRequested(index, start, end, cache.entry(index).token))
    return cache


def _reveal_current(state: SchedulerState, effects: list) -> SchedulerState:
    """弹幕即使已经预加载，也要等到所属周期成为当前周期时才展示。"""
    current = state.current_index
    if current is None or state.geometry is None:
        return state
    if current in state.active or current in state.finished:
        return state
    items = state.cache.items(current)
    if items is None:
        return state

    revealed = dict(state.revealed)
    revealed[current] = RevealedPeriod(current, items, state.last_time)
    effects.append(PeriodRevealed(current, state.last_time))
    logging.debug(f"展示周期 {current}，共 {len(items)} 条弹幕")
    return replace(state, active=state.active | {current}, revealed=MappingProxyType(revealed))


def _remove_active(state: SchedulerState, indices, effects: list) -> SchedulerState:
    gone = sorted(i for i in indices if i in state.active)
    if not gone:
        return state
    revealed = {i: r for i, r in state.revealed.items() if i not in gone}
    for index in gone:
        effects.append(PeriodRemoved(index))
    return replace(state, active=state.active - set(gone), revealed=MappingProxyType(revealed))


def _on_period_finished(state: SchedulerState, index: int, effects: list) -> SchedulerState:
    if index not in state.active:
        return state
    state = _remove_active(state, [index], effects)
    return replace(state, finished=state.finished | {index})


def _reset(state: SchedulerState, previous: float, time: float, effects: list) -> SchedulerState:
    # 只清空已展示的周期，已加载的缓存保留下来，回到附近时可以直接使用
    logging.info(f"检测到播放跳转: {previous:.0f}ms -> {time:.0f}ms，正在重置弹幕...")
    effects.append(TimelineReset(previous, time))
    state = _remove_active(state, state.active, effects)
    return replace(state, generation=state.generation + 1, finished=frozenset())


def _on_fetch_resolved(state: SchedulerState, event: FetchResolved, effects: list) -> SchedulerState:
    if event.error is not None:
        cache = state.cache.fail(event.index, event.token, event.error)
        if cache is not state.cache:
            effects.append(FetchFailed(event.index, event.error))
    else:
        cache = state.cache.resolve(event.index, event.token, event.items or ())
    if cache is state.cache:
        return state
    return _reveal_current(replace(state, cache=cache), effects)


def _on_geometry(config: SchedulerConfig, state: SchedulerState, event: GeometryResolved,
                 effects: list) -> SchedulerState:
    first_time = state.geometry is None
    state = replace(state, geometry=(event.width, event.height))
    if not first_time or state.last_time is None:
        return state
    state = replace(state, current_index=Period.index_at(state.last_time, config.period_length))
    return _schedule(config, state, effects)


def _on_pause(state: SchedulerState, paused: bool, effects: list) -> SchedulerState:
    session = SessionState.PAUSED if paused else SessionState.RUNNING
    if session is state.session:
        return state
    effects.append(PlaybackStateChanged(paused))
    return replace(state, session=session)


def _on_retry(state: SchedulerState, index: int, effects: list) -> SchedulerState:
    cache = state.cache
    if cache.status(index) is CacheStatus.FAILED:
        cache = cache.evict([index])
    if index in cache:
        return state
    cache = _request(cache, index, effects)
    return _reveal_current(replace(state, cache=cache), effects)

# period_cache.py
import logging
from types import MappingProxyType
from typing import Callable, Iterable

from danmaku_models import CacheEntry, CacheStatus, Period, RawItem


class PeriodCache:
    """
    周期缓存：周期序号 -> 已加载的弹幕。

    缓存是不可变的快照，每次修改都会返回一个新的 PeriodCache，
    这样调度器在计算下一帧状态时，旧快照的读者不会看到中间状态。
    PENDING 记录同时充当“正在请求”的集合，保证同一周期不会被重复请求。
    """

    def __init__(self, period_length: int, entries: dict[int, CacheEntry] | None = None,
                 next_token: int = 1):
        self.period_length = period_length
        self._entries = MappingProxyType(dict(entries or {}))
        self._next_token = next_token

    def _replace(self, entries: dict[int, CacheEntry], next_token: int | None = None) -> 'PeriodCache':
        token = self._next_token if next_token is None else next_token
        return PeriodCache(self.period_length, entries, token)

    # --- 读取 ---

    def entry(self, index: int) -> CacheEntry | None:
        return self._entries.get(index)

    def status(self, index: int) -> CacheStatus | None:
        entry = self._entries.get(index)
        return entry.status if entry else None

    def items(self, index: int) -> tuple[RawItem, ...] | None:
        entry = self._entries.get(index)
        if entry and entry.status is CacheStatus.LOADED:
            return entry.items
        return None

    def indices(self) -> list[int]:
        return sorted(self._entries)

    def pending_indices(self) -> list[int]:
        return sorted(i for i, e in self._entries.items() if e.status is CacheStatus.PENDING)

    def count(self, status: CacheStatus) -> int:
        return sum(1 for e in self._entries.values() if e.status is status)

    def __contains__(self, index: int) -> bool:
        return index in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # --- 修改（返回新快照） ---

    def get_or_request(self, index: int,
                       loader_fn: Callable[[int, int], object]) -> tuple['PeriodCache', CacheStatus]:
        """
        如果该周期已有记录，直接返回其状态，不产生任何副作用。
        否则创建一条 PENDING 记录，并且只调用一次 loader_fn(start, end)。

        FAILED 记录同样原样返回；需要重试时，调用方应先 evict 再请求。

        Returns:
            tuple[PeriodCache, CacheStatus]: 新的缓存快照和该周期的当前状态。
        """
        entry = self._entries.get(index)
        if entry is not None:
            return self, entry.status

        period = Period(index, self.period_length)
        entries = dict(self._entries)
        entries[index] = CacheEntry(index, CacheStatus.PENDING, self._next_token)
        cache = self._replace(entries, self._next_token + 1)
        loader_fn(period.start_time, period.end_time)
        return cache, CacheStatus.PENDING

    def resolve(self, index: int, token: int, items: Iterable[RawItem]) -> 'PeriodCache':
        """将 PENDING 记录标记为 LOADED。过期的结果（记录已被淘汰或被重新请求）会被丢弃。"""
        entry = self._live_pending(index, token)
        if entry is None:
            return self
        entries = dict(self._entries)
        entries[index] = entry.settled(CacheStatus.LOADED, items=tuple(items))
        return self._replace(entries)

    def fail(self, index: int, token: int, error: str) -> 'PeriodCache':
        """将 PENDING 记录标记为 FAILED。"""
        entry = self._live_pending(index, token)
        if entry is None:
            return self
        entries = dict(self._entries)
        entries[index] = entry.settled(CacheStatus.FAILED, error=error)
        return self._replace(entries)

    def evict(self, indices: Iterable[int]) -> 'PeriodCache':
        """移除给定序号的记录，不论其状态。对不存在的序号是幂等的。"""
        doomed = [i for i in indices if i in self._entries]
        if not doomed:
            return self
        entries = dict(self._entries)
        for i in doomed:
            del entries[i]
        logging.debug(f"已淘汰周期缓存: {sorted(doomed)}")
        return self._replace(entries)

    def _live_pending(self, index: int, token: int) -> CacheEntry | None:
        entry = self._entries.get(index)
        if entry is None or entry.token != token or entry.status is not CacheStatus.PENDING:
            logging.debug(f"忽略过期的加载结果: 周期 {index}, 请求 #{token}")
            return None
        return entry

    def __repr__(self):
        return f"<PeriodCache(entries={list(self._entries.values())})>"

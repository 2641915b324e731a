from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from journalflow.core.config import WorkflowConfig
from journalflow.core.errors import ConcurrencyConflict


class _LockEntry:
    __slots__ = ("lock", "users")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        # 持有 + 等待中的调用方数量，归零时从表中移除
        self.users = 0


class SubmissionLocks:
    """
    按稿件 id 的进程内互斥锁（single-writer-per-submission）。

    中文注释:
    - 同一稿件的状态流转 / 决策 / deadline 完成必须串行；不同稿件之间互不阻塞。
    - 跨进程的并发由数据库侧的 version 条件更新兜底（见 WorkflowRepository.update_submission）。
    - 等锁超时直接抛 ConcurrencyConflict，调用方可重试。
    - 最后一个使用者离开后锁即被回收，表的大小只与正在处理的稿件数有关。
    """

    def __init__(self, timeout_seconds: float = 5.0) -> None:
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._locks: dict[str, _LockEntry] = {}

    def active_count(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, submission_id: str) -> _LockEntry:
        with self._guard:
            entry = self._locks.get(submission_id)
            if entry is None:
                entry = _LockEntry()
                self._locks[submission_id] = entry
            entry.users += 1
            return entry

    def _checkin(self, submission_id: str, entry: _LockEntry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0 and self._locks.get(submission_id) is entry:
                del self._locks[submission_id]

    @contextmanager
    def hold(self, submission_id: str) -> Iterator[None]:
        key = str(submission_id)
        entry = self._checkout(key)
        try:
            if not entry.lock.acquire(timeout=self._timeout):
                raise ConcurrencyConflict(key, "Submission is busy, retry later")
            try:
                yield
            finally:
                entry.lock.release()
        finally:
            self._checkin(key, entry)


# 全局实例：同一进程内所有服务共享
submission_locks = SubmissionLocks(WorkflowConfig.from_env().lock_timeout_seconds)

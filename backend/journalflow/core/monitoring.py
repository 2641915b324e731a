from __future__ import annotations

import logging
import threading
from collections import Counter
from typing import Any

import sentry_sdk

logger = logging.getLogger("journalflow.side_effects")

_lock = threading.Lock()
_failures: Counter[str] = Counter()


def report_side_effect_failure(area: str, exc: BaseException, **context: Any) -> None:
    """
    记录“尽力而为”副作用（审计/通知）的失败。

    中文注释:
    - 这些失败不能回滚或阻断主流程，但必须可观测：写 warning 日志 + 计数 + 上报 Sentry。
    - Sentry 未初始化时 capture_exception 为 no-op。
    """
    with _lock:
        _failures[area] += 1
    logger.warning("[%s] side effect failed (ignored): %s context=%s", area, exc, context, exc_info=exc)
    try:
        with sentry_sdk.new_scope() as scope:
            scope.set_tag("side_effect", area)
            for key, value in context.items():
                scope.set_extra(key, value)
            sentry_sdk.capture_exception(exc)
    except Exception as sentry_exc:
        logger.debug("sentry capture failed: %s", sentry_exc)


def side_effect_failures() -> dict[str, int]:
    with _lock:
        return dict(_failures)


def reset_side_effect_failures() -> None:
    with _lock:
        _failures.clear()

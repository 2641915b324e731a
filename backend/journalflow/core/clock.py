from datetime import datetime, timezone
from typing import Callable

# 可注入时钟：服务层一律通过 now() 取时间，测试里替换为固定时间
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # 数据库里读出的无时区时间按 UTC 处理
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

import copy
import os
import threading
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, AsyncGenerator, Callable, Optional

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from journalflow.core.config import WorkflowConfig
from journalflow.core.locks import SubmissionLocks
from journalflow.core.permissions import Role
from journalflow.models.actor import Actor
from journalflow.models.submission import SubmissionCreate
from journalflow.services.audit_service import SupabaseAuditSink
from journalflow.services.deadline_service import DeadlineService
from journalflow.services.decision_service import DecisionService
from journalflow.services.editorial_service import EditorialService
from journalflow.services.notification_service import NotificationService
from journalflow.services.repository import WorkflowRepository
from journalflow.services.review_settings_service import ReviewSettingsService
from journalflow.services.reviewer_service import ReviewerService

# === 全局测试配置 ===
# 中文注释:
# 1. 单元测试不连真实 Supabase：FakeSupabase 在内存里模拟 PostgREST 的链式调用。
# 2. 时钟固定（FixedClock），deadline 分类等时间相关断言可精确到秒。
# 3. API 测试通过 app.dependency_overrides 注入会话与基于内存库的服务。


class _Resp:
    def __init__(self, data):
        self.data = data


class _FakeQuery:
    def __init__(self, db: "FakeSupabase", table: str):
        self._db = db
        self._table = table
        self._op: Optional[str] = None
        self._payload: Any = None
        self._filters: list[Callable[[dict], bool]] = []
        self._orders: list[tuple[str, bool]] = []
        self._limit: Optional[int] = None
        self._on_conflict: Optional[str] = None

    def select(self, *_cols, **_kwargs):
        if self._op is None:
            self._op = "select"
        return self

    def insert(self, payload):
        self._op, self._payload = "insert", payload
        return self

    def update(self, payload):
        self._op, self._payload = "update", payload
        return self

    def upsert(self, payload, on_conflict: Optional[str] = None, **_kwargs):
        self._op, self._payload, self._on_conflict = "upsert", payload, on_conflict
        return self

    def delete(self):
        self._op = "delete"
        return self

    def eq(self, col, value):
        self._filters.append(lambda row: row.get(col) == value)
        return self

    def neq(self, col, value):
        self._filters.append(lambda row: row.get(col) != value)
        return self

    def in_(self, col, values):
        allowed = list(values)
        self._filters.append(lambda row: row.get(col) in allowed)
        return self

    def is_(self, col, value):
        if str(value).lower() == "null":
            self._filters.append(lambda row: row.get(col) is None)
        else:
            self._filters.append(lambda row: row.get(col) is not None)
        return self

    def order(self, col, desc: bool = False):
        self._orders.append((col, desc))
        return self

    def limit(self, n: int):
        self._limit = n
        return self

    def _match(self, row: dict) -> bool:
        return all(f(row) for f in self._filters)

    def execute(self):
        return self._db._execute(self)


class FakeSupabase:
    """
    内存版 PostgREST 客户端（只实现工作流用到的子集）。

    - tables: {表名: [行]}，行以 JSON 形式存储（与 model_dump(mode="json") 一致）
    - fail_on(table, op): 让下一次（或 times 次）该操作抛异常，用于测试补偿/尽力而为路径
    """

    def __init__(self):
        self.tables: dict[str, list[dict]] = {}
        self._failures: dict[tuple[str, str], int] = {}
        self._lock = threading.Lock()

    def table(self, name: str) -> _FakeQuery:
        return _FakeQuery(self, name)

    def rows(self, name: str) -> list[dict]:
        return self.tables.setdefault(name, [])

    def seed(self, name: str, *rows: dict) -> None:
        self.rows(name).extend(copy.deepcopy(list(rows)))

    def fail_on(self, table: str, op: str, times: int = 1) -> None:
        self._failures[(table, op)] = times

    def _maybe_fail(self, table: str, op: str) -> None:
        left = self._failures.get((table, op), 0)
        if left > 0:
            self._failures[(table, op)] = left - 1
            raise RuntimeError(f"simulated {op} failure on {table}")

    def _execute(self, q: _FakeQuery) -> _Resp:
        with self._lock:
            op = q._op or "select"
            self._maybe_fail(q._table, op)
            rows = self.rows(q._table)

            if op == "insert":
                payload = q._payload if isinstance(q._payload, list) else [q._payload]
                inserted = []
                for item in payload:
                    row = copy.deepcopy(item)
                    row.setdefault("id", str(uuid.uuid4()))
                    rows.append(row)
                    inserted.append(copy.deepcopy(row))
                return _Resp(inserted)

            if op == "upsert":
                payload = q._payload if isinstance(q._payload, list) else [q._payload]
                key = q._on_conflict or "id"
                out = []
                for item in payload:
                    existing = next((r for r in rows if r.get(key) == item.get(key)), None)
                    if existing is not None:
                        existing.update(copy.deepcopy(item))
                        out.append(copy.deepcopy(existing))
                    else:
                        row = copy.deepcopy(item)
                        rows.append(row)
                        out.append(copy.deepcopy(row))
                return _Resp(out)

            matched = [r for r in rows if q._match(r)]

            if op == "update":
                for r in matched:
                    r.update(copy.deepcopy(q._payload))
                return _Resp([copy.deepcopy(r) for r in matched])

            if op == "delete":
                self.tables[q._table] = [r for r in rows if not q._match(r)]
                return _Resp([copy.deepcopy(r) for r in matched])

            result = [copy.deepcopy(r) for r in matched]
            for col, desc in reversed(q._orders):
                result.sort(key=lambda r: (r.get(col) is None, str(r.get(col) or "")), reverse=desc)
            if q._limit is not None:
                result = result[: q._limit]
            return _Resp(result)


class FixedClock:
    def __init__(self, now: datetime):
        self.current = now

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs) -> datetime:
        self.current = self.current + timedelta(**kwargs)
        return self.current


FIXED_NOW = datetime(2024, 3, 1, 9, 30, 15, 250000, tzinfo=timezone.utc)


@pytest.fixture
def fake_db() -> FakeSupabase:
    return FakeSupabase()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(FIXED_NOW)


@pytest.fixture
def workflow_config() -> WorkflowConfig:
    return WorkflowConfig()


@pytest.fixture
def locks() -> SubmissionLocks:
    return SubmissionLocks(timeout_seconds=2.0)


@pytest.fixture
def repo(fake_db) -> WorkflowRepository:
    return WorkflowRepository(fake_db)


@pytest.fixture
def settings_service(fake_db, clock) -> ReviewSettingsService:
    return ReviewSettingsService(fake_db, clock=clock)


@pytest.fixture
def audit_sink(repo) -> SupabaseAuditSink:
    return SupabaseAuditSink(repo)


@pytest.fixture
def notifier(fake_db) -> NotificationService:
    return NotificationService(fake_db)


@pytest.fixture
def editorial(repo, workflow_config, settings_service, audit_sink, notifier, locks, clock) -> EditorialService:
    return EditorialService(
        repo,
        config=workflow_config,
        settings_service=settings_service,
        audit_sink=audit_sink,
        notifier=notifier,
        locks=locks,
        clock=clock,
    )


@pytest.fixture
def reviewer_service(repo, workflow_config, settings_service, audit_sink, notifier, locks, clock) -> ReviewerService:
    return ReviewerService(
        repo,
        config=workflow_config,
        settings_service=settings_service,
        audit_sink=audit_sink,
        notifier=notifier,
        locks=locks,
        clock=clock,
    )


@pytest.fixture
def decision_service(editorial) -> DecisionService:
    return DecisionService(editorial)


@pytest.fixture
def deadline_service(repo, workflow_config, notifier, locks, clock) -> DeadlineService:
    return DeadlineService(repo, config=workflow_config, notifier=notifier, locks=locks, clock=clock)


# --------------------------------------------------------------------------- actors


def make_actor(role: Role, actor_id: Optional[str] = None) -> Actor:
    return Actor(actor_id=actor_id or f"{role.value.lower()}-1", role=role)


@pytest.fixture
def author() -> Actor:
    return Actor(actor_id="author-1", role=Role.AUTHOR, email="author@example.com", name="Nguyen Van A")


@pytest.fixture
def section_editor() -> Actor:
    return make_actor(Role.SECTION_EDITOR)


@pytest.fixture
def managing_editor() -> Actor:
    return make_actor(Role.MANAGING_EDITOR)


@pytest.fixture
def eic() -> Actor:
    return make_actor(Role.EIC)


@pytest.fixture
def reviewer_a() -> Actor:
    return Actor(actor_id="reviewer-a", role=Role.REVIEWER)


@pytest.fixture
def reviewer_b() -> Actor:
    return Actor(actor_id="reviewer-b", role=Role.REVIEWER)


@pytest.fixture
def actor_factory() -> Callable[..., Actor]:
    return make_actor


# ------------------------------------------------------------------------ scenarios


@pytest.fixture
def manuscript_payload() -> SubmissionCreate:
    return SubmissionCreate(
        title="Ứng dụng học máy trong chẩn đoán hình ảnh",
        abstract="Nghiên cứu đánh giá hiệu quả của mô hình học sâu trên dữ liệu X-quang.",
        keywords=["machine learning", "radiology", "machine learning"],
        author_name="Nguyen Van A",
        author_email="author@example.com",
        author_organization="Military Medical University",
    )


@pytest.fixture
def review_form() -> Callable[..., dict]:
    def _make(recommendation: str = "MINOR", score: int = 70, **overrides) -> dict:
        data = {
            "score": score,
            "recommendation": recommendation,
            "novelty": "Moderate novelty",
            "methodology": "Sound",
            "results": "Convincing",
            "presentation": "Clear",
            "references": "Adequate",
            "strengths": "Large dataset",
            "weaknesses": "Single centre",
            "comments": "Please clarify the sampling procedure.",
            "confidential_comments": "Borderline; possible overlap with prior work.",
        }
        data.update(overrides)
        return data

    return _make


@pytest.fixture
def submitted(editorial, author, manuscript_payload):
    """一篇处于 NEW 的稿件。"""
    return editorial.submit_manuscript(author, manuscript_payload)


@pytest.fixture
def under_review(editorial, reviewer_service, submitted, section_editor, reviewer_a, reviewer_b):
    """两位审稿人已分配并送审（UNDER_REVIEW，第 1 轮）。"""
    reviewer_service.assign_reviewer(submitted.id, reviewer_a.actor_id, section_editor)
    reviewer_service.assign_reviewer(submitted.id, reviewer_b.actor_id, section_editor)
    result = editorial.transition_status(submitted.id, section_editor, "send_to_review")
    return result.submission


@pytest.fixture
def reviews_done(under_review, repo, reviewer_service, reviewer_a, reviewer_b, review_form):
    """当前轮两份评审均已提交（可以决策）。"""

    def _submit(rec_a: str = "MINOR", rec_b: str = "MINOR"):
        reviews = {r.reviewer_id: r for r in repo.list_reviews(under_review.id, round_no=under_review.current_round)}
        reviewer_service.submit_review(reviews[reviewer_a.actor_id].id, reviewer_a, review_form(rec_a))
        reviewer_service.submit_review(reviews[reviewer_b.actor_id].id, reviewer_b, review_form(rec_b))
        return repo.get_submission(under_review.id)

    return _submit


# ------------------------------------------------------------------------------ API


def generate_test_token(user_id: str = "00000000-0000-0000-0000-000000000000", email: str = "test@example.com"):
    """
    生成用于测试的JWT令牌（与 core.auth_utils 使用同一密钥）
    """
    secret = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "exp": now + timedelta(hours=1),
        "iat": now,
        "role": "authenticated",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


@pytest.fixture
def auth_token() -> str:
    return generate_test_token()


@pytest.fixture
def token_factory() -> Callable[..., str]:
    return generate_test_token


@pytest.fixture
def app():
    from main import app as asgi_app

    yield asgi_app
    asgi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator:
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as ac:
        yield ac


@pytest.fixture
def use_services(app, editorial, reviewer_service, decision_service, deadline_service, settings_service):
    """把基于内存库的服务注入到路由依赖。"""
    from journalflow.api.v1 import deps

    app.dependency_overrides[deps.get_editorial_service] = lambda: editorial
    app.dependency_overrides[deps.get_reviewer_service] = lambda: reviewer_service
    app.dependency_overrides[deps.get_decision_service] = lambda: decision_service
    app.dependency_overrides[deps.get_deadline_service] = lambda: deadline_service
    app.dependency_overrides[deps.get_review_settings_service] = lambda: settings_service
    return app


@pytest.fixture
def login_as(app):
    """login_as(actor)：覆盖 get_session，后续请求以该身份执行。"""
    from journalflow.core.roles import get_session

    def _login(actor: Actor) -> None:
        app.dependency_overrides[get_session] = lambda: actor

    return _login

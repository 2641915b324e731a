import pytest

from journalflow.models.submission import (
    ACTION_RULES,
    TERMINAL_STATUSES,
    SubmissionCreate,
    SubmissionStatus,
    WorkflowAction,
    normalize_status,
    parse_action,
)

S = SubmissionStatus


@pytest.mark.unit
def test_allowed_next_matches_lifecycle():
    assert S.allowed_next(S.NEW) == {S.UNDER_REVIEW, S.DESK_REJECT}
    assert S.allowed_next(S.UNDER_REVIEW) == {S.REVISION, S.ACCEPTED, S.REJECTED}
    assert S.allowed_next(S.REVISION) == {S.UNDER_REVIEW, S.REJECTED}
    assert S.allowed_next(S.ACCEPTED) == {S.IN_PRODUCTION}
    assert S.allowed_next(S.IN_PRODUCTION) == {S.PUBLISHED}


@pytest.mark.unit
@pytest.mark.parametrize("status", sorted(TERMINAL_STATUSES, key=lambda s: s.value))
def test_terminal_states_have_no_exit(status):
    assert status.is_terminal
    assert S.allowed_next(status) == set()


@pytest.mark.unit
def test_status_tokens_are_stable():
    # 历史数据依赖这些字符串
    assert [s.value for s in S] == [
        "NEW",
        "DESK_REJECT",
        "UNDER_REVIEW",
        "REVISION",
        "ACCEPTED",
        "REJECTED",
        "IN_PRODUCTION",
        "PUBLISHED",
    ]


@pytest.mark.unit
def test_normalize_status():
    assert normalize_status(" under_review ") == S.UNDER_REVIEW
    assert normalize_status(S.NEW) == S.NEW
    assert normalize_status("pre_check") is None
    assert normalize_status(None) is None
    assert normalize_status("") is None


@pytest.mark.unit
def test_every_action_rule_is_a_legal_edge():
    for action, rule in ACTION_RULES.items():
        for source in rule.sources:
            assert rule.target in S.allowed_next(source), action


@pytest.mark.unit
def test_parse_action():
    assert parse_action("SEND_TO_REVIEW") == WorkflowAction.SEND_TO_REVIEW
    assert parse_action(WorkflowAction.PUBLISH) == WorkflowAction.PUBLISH
    assert parse_action("teleport") is None
    assert parse_action(None) is None


@pytest.mark.unit
def test_submission_create_dedupes_keywords():
    payload = SubmissionCreate(
        title="A valid title",
        abstract="An abstract that is long enough to pass validation.",
        keywords=[" ai ", "ai", "", "nlp"],
    )
    assert payload.keywords == ["ai", "nlp"]

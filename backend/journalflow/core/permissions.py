from __future__ import annotations

from enum import Enum
from typing import Mapping, Optional, TypeVar, Union

# 中文注释：
# - 这里集中定义“角色 -> 资源 -> 动作”权限矩阵，所有状态流转前都先查这里。
# - 纯函数 + 静态表：不访问数据库，便于对 role × resource × action 做穷举测试。
# - 未出现在表里的组合一律拒绝（default-deny）。


class Role(str, Enum):
    READER = "READER"
    AUTHOR = "AUTHOR"
    REVIEWER = "REVIEWER"
    SECTION_EDITOR = "SECTION_EDITOR"
    LAYOUT_EDITOR = "LAYOUT_EDITOR"
    MANAGING_EDITOR = "MANAGING_EDITOR"
    EIC = "EIC"
    SECURITY_AUDITOR = "SECURITY_AUDITOR"
    SYSADMIN = "SYSADMIN"


class Resource(str, Enum):
    SUBMISSION = "SUBMISSION"
    SUBMISSION_OWN = "SUBMISSION_OWN"
    REVIEW = "REVIEW"
    REVIEW_ASSIGNED = "REVIEW_ASSIGNED"
    ARTICLE = "ARTICLE"
    ISSUE = "ISSUE"
    USER = "USER"
    CATEGORY = "CATEGORY"
    KEYWORD = "KEYWORD"
    VOLUME = "VOLUME"
    AUDIT_LOG = "AUDIT_LOG"
    SYSTEM_SETTINGS = "SYSTEM_SETTINGS"
    CMS_BANNER = "CMS_BANNER"
    CMS_MENU = "CMS_MENU"
    CMS_PAGE = "CMS_PAGE"
    NEWS = "NEWS"
    MESSAGE = "MESSAGE"
    COMMENT = "COMMENT"
    COPYEDIT = "COPYEDIT"
    PRODUCTION = "PRODUCTION"
    PLAGIARISM = "PLAGIARISM"


class Action(str, Enum):
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    PUBLISH = "PUBLISH"
    ASSIGN = "ASSIGN"
    REVIEW = "REVIEW"
    APPROVE = "APPROVE"
    REJECT = "REJECT"


A = Action
R = Resource

_CRUD = frozenset({A.CREATE, A.READ, A.UPDATE, A.DELETE})

PERMISSION_MATRIX: Mapping[Role, Mapping[Resource, frozenset[Action]]] = {
    Role.READER: {},
    Role.AUTHOR: {
        R.SUBMISSION_OWN: frozenset({A.CREATE, A.READ, A.UPDATE}),
        R.MESSAGE: frozenset({A.CREATE, A.READ}),
        R.COMMENT: frozenset({A.CREATE, A.READ}),
    },
    Role.REVIEWER: {
        R.REVIEW_ASSIGNED: frozenset({A.READ, A.UPDATE, A.REVIEW}),
        R.MESSAGE: frozenset({A.CREATE, A.READ}),
    },
    Role.SECTION_EDITOR: {
        R.SUBMISSION: frozenset({A.READ, A.UPDATE, A.ASSIGN}),
        R.REVIEW: frozenset({A.READ, A.ASSIGN}),
        R.ARTICLE: frozenset({A.READ}),
        R.MESSAGE: frozenset({A.CREATE, A.READ}),
        R.COMMENT: frozenset({A.READ, A.APPROVE, A.REJECT}),
        R.COPYEDIT: frozenset({A.CREATE, A.READ, A.UPDATE}),
        R.PRODUCTION: frozenset({A.READ}),
        R.PLAGIARISM: frozenset({A.CREATE, A.READ}),
    },
    Role.LAYOUT_EDITOR: {
        R.ARTICLE: frozenset({A.READ}),
        R.MESSAGE: frozenset({A.CREATE, A.READ}),
        R.COPYEDIT: frozenset({A.READ, A.UPDATE}),
        R.PRODUCTION: frozenset({A.CREATE, A.READ, A.UPDATE}),
    },
    Role.MANAGING_EDITOR: {
        R.SUBMISSION: frozenset({A.READ, A.UPDATE, A.ASSIGN, A.APPROVE, A.REJECT}),
        R.REVIEW: frozenset({A.READ, A.ASSIGN}),
        R.ARTICLE: frozenset({A.READ, A.UPDATE}),
        R.ISSUE: _CRUD,
        R.CATEGORY: _CRUD,
        R.KEYWORD: _CRUD,
        R.VOLUME: _CRUD,
        R.MESSAGE: frozenset({A.CREATE, A.READ}),
        R.COMMENT: frozenset({A.READ, A.APPROVE, A.REJECT, A.DELETE}),
        R.NEWS: _CRUD | {A.PUBLISH},
        R.CMS_BANNER: _CRUD,
        R.CMS_MENU: _CRUD,
        R.CMS_PAGE: _CRUD,
        R.COPYEDIT: _CRUD,
        R.PRODUCTION: frozenset({A.CREATE, A.READ, A.UPDATE}),
        R.PLAGIARISM: frozenset({A.CREATE, A.READ, A.UPDATE}),
    },
    Role.EIC: {
        R.SUBMISSION: _CRUD | {A.APPROVE, A.REJECT, A.PUBLISH},
        R.REVIEW: _CRUD | {A.ASSIGN},
        R.ARTICLE: _CRUD | {A.PUBLISH},
        R.ISSUE: _CRUD | {A.PUBLISH},
        R.USER: frozenset({A.READ}),
        R.CATEGORY: _CRUD,
        R.KEYWORD: _CRUD,
        R.VOLUME: _CRUD,
        R.MESSAGE: frozenset({A.CREATE, A.READ}),
        R.COMMENT: frozenset({A.READ, A.APPROVE, A.REJECT, A.DELETE}),
        R.NEWS: _CRUD | {A.PUBLISH},
        R.CMS_BANNER: _CRUD,
        R.CMS_MENU: _CRUD,
        R.CMS_PAGE: _CRUD,
        R.COPYEDIT: _CRUD,
        R.PRODUCTION: frozenset({A.CREATE, A.READ, A.UPDATE, A.PUBLISH}),
        R.PLAGIARISM: _CRUD,
        R.SYSTEM_SETTINGS: frozenset({A.READ, A.UPDATE}),
    },
    Role.SECURITY_AUDITOR: {
        R.AUDIT_LOG: frozenset({A.READ}),
    },
    Role.SYSADMIN: {
        R.SUBMISSION: _CRUD | {A.APPROVE, A.REJECT, A.PUBLISH},
        R.REVIEW: _CRUD | {A.ASSIGN},
        R.ARTICLE: _CRUD | {A.PUBLISH},
        R.ISSUE: _CRUD | {A.PUBLISH},
        R.USER: _CRUD,
        R.CATEGORY: _CRUD,
        R.KEYWORD: _CRUD,
        R.VOLUME: _CRUD,
        R.AUDIT_LOG: frozenset({A.READ}),
        R.MESSAGE: frozenset({A.CREATE, A.READ, A.DELETE}),
        R.COMMENT: _CRUD | {A.APPROVE, A.REJECT},
        R.NEWS: _CRUD | {A.PUBLISH},
        R.CMS_BANNER: _CRUD,
        R.CMS_MENU: _CRUD,
        R.CMS_PAGE: _CRUD,
        R.COPYEDIT: _CRUD,
        R.PRODUCTION: _CRUD | {A.PUBLISH},
        R.PLAGIARISM: _CRUD,
        R.SYSTEM_SETTINGS: _CRUD,
    },
}

# 中文注释：
# - 组合角色集合是独立的策略声明，不在运行时从矩阵推导；
# - 两者必须手工保持一致，由单元测试校验（见 tests/unit/test_permission_matrix.py）。
ADMIN_ROLES: frozenset[Role] = frozenset({Role.EIC, Role.SYSADMIN})
EDITOR_ROLES: frozenset[Role] = frozenset(
    {Role.SECTION_EDITOR, Role.MANAGING_EDITOR, Role.EIC, Role.SYSADMIN}
)
CONTENT_MANAGER_ROLES: frozenset[Role] = frozenset({Role.MANAGING_EDITOR, Role.EIC, Role.SYSADMIN})

E = TypeVar("E", bound=Enum)


def _coerce(enum_cls: type[E], value: Union[E, str, None]) -> Optional[E]:
    if isinstance(value, enum_cls):
        return value
    raw = str(value or "").strip().upper()
    if not raw:
        return None
    try:
        return enum_cls(raw)
    except ValueError:
        return None


def parse_role(value: Union[Role, str, None]) -> Optional[Role]:
    return _coerce(Role, value)


def can_access(
    role: Union[Role, str, None],
    resource: Union[Resource, str, None],
    action: Union[Action, str, None],
) -> bool:
    """
    判定角色能否对资源执行动作。

    未知角色 / 未知资源 / 未授权组合一律返回 False。
    """
    r = _coerce(Role, role)
    res = _coerce(Resource, resource)
    act = _coerce(Action, action)
    if r is None or res is None or act is None:
        return False
    return act in PERMISSION_MATRIX.get(r, {}).get(res, frozenset())


def is_admin(role: Union[Role, str, None]) -> bool:
    return _coerce(Role, role) in ADMIN_ROLES


def is_editor(role: Union[Role, str, None]) -> bool:
    return _coerce(Role, role) in EDITOR_ROLES


def can_manage_content(role: Union[Role, str, None]) -> bool:
    return _coerce(Role, role) in CONTENT_MANAGER_ROLES


def get_role_permissions(role: Union[Role, str, None]) -> set[tuple[Resource, Action]]:
    """
    返回角色被授予的全部 (resource, action)（用于前端 capability 输出）。
    """
    r = _coerce(Role, role)
    if r is None:
        return set()
    return {
        (resource, action)
        for resource, actions in PERMISSION_MATRIX.get(r, {}).items()
        for action in actions
    }

from journalflow.services.deadline_service import DeadlineService
from journalflow.services.decision_service import DecisionService
from journalflow.services.editorial_service import EditorialService
from journalflow.services.review_settings_service import ReviewSettingsService
from journalflow.services.reviewer_service import ReviewerService

# 中文注释：服务工厂集中在这里，测试通过 app.dependency_overrides 注入基于内存库的实例。


def get_editorial_service() -> EditorialService:
    return EditorialService()


def get_reviewer_service() -> ReviewerService:
    return ReviewerService()


def get_decision_service() -> DecisionService:
    return DecisionService()


def get_deadline_service() -> DeadlineService:
    return DeadlineService()


def get_review_settings_service() -> ReviewSettingsService:
    return ReviewSettingsService()

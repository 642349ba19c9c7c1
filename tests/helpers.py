from ctms.models.user import User
from ctms.services.auth_service import issue_access_token_for_user

PASSWORD = "Secret@123"


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {issue_access_token_for_user(user)}"}


def visit_by_sequence(subject, sequence: int):
    return next(v for v in subject.subject_visits if v.visit.visit_sequence == sequence)

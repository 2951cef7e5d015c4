"""Key layout shared by every backend."""

from typing import Union

Id = Union[int, str]


def counter(category: str) -> str:
    return f"counter:{category}"


def user_by_email(email: str) -> str:
    return f"user:email:{email}"


def user_by_id(user_id: Id) -> str:
    return f"user:id:{user_id}"


def session(token: str) -> str:
    return f"session:{token}"


def document(document_id: Id) -> str:
    return f"document:{document_id}"


def user_documents(user_id: Id) -> str:
    return f"user:{user_id}:documents"


def reviewer(reviewer_id: Id) -> str:
    return f"reviewer:{reviewer_id}"


def user_reviewers(user_id: Id) -> str:
    return f"user:{user_id}:reviewers"


def quiz(reviewer_id: Id) -> str:
    return f"quiz:{reviewer_id}"


def user_attempts(user_id: Id) -> str:
    return f"attempts:user:{user_id}"

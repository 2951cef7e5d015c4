"""Storage facade: entity operations over a key-value backend.

Request handlers only ever talk to ``Storage``. The backend is chosen once at
startup and injected; nothing here knows which one is active.

Not-found and ownership mismatch both come back as None/False so callers
cannot discover other users' records. Backend errors propagate unchanged and
multi-step writes are not rolled back.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from scibrain.services.auth_service import AuthService, format_timestamp, parse_timestamp
from scibrain.storage import ids, keys
from scibrain.storage.backend import KeyValueBackend
from scibrain.storage.ids import IdAllocator

logger = logging.getLogger("scibrain.storage")

SESSION_TTL_SECONDS = 60 * 60 * 24
DEFAULT_LIST_LIMIT = 50
BEARER_PREFIX = "Bearer "

_WHITESPACE_RE = re.compile(r"\s+")


class DuplicateEmailError(ValueError):
    """Raised by create_user when the email already belongs to a user."""


def count_words(text: str) -> int:
    """
    Number of pieces after splitting on whitespace runs.

    Leading/trailing whitespace yields empty pieces that are counted, so an
    empty string counts as 1. Stored word counts have always been computed
    this way; keep it so old and new records agree.
    """
    return len(_WHITESPACE_RE.split(text or ""))


def bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Token from an ``Authorization: Bearer <token>`` header, else None."""
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    return authorization[len(BEARER_PREFIX):] or None


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_count(value: Any) -> int:
    """Generator metadata is untrusted; anything not numeric counts as 0."""
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError, OverflowError):
        return 0


class Storage:
    """
    Users, sessions, documents, reviewers, quiz data, attempts and statistics.

    ``now`` is the clock used for timestamps and session expiry checks;
    tests pass a fixed or steppable clock.
    """

    def __init__(
        self,
        backend: KeyValueBackend,
        auth: Optional[AuthService] = None,
        now: Callable[[], datetime] = _utcnow,
        list_limit: int = DEFAULT_LIST_LIMIT,
    ):
        self.backend = backend
        self.auth = auth or AuthService()
        self.now = now
        self.list_limit = list_limit
        self.ids = IdAllocator(backend)

    @property
    def backend_name(self) -> str:
        return self.backend.name

    def _timestamp(self) -> str:
        return format_timestamp(self.now())

    async def close(self) -> None:
        await self.backend.close()

    # ---- Users ----

    async def create_user(self, full_name: str, email: str, password_hash: str) -> int:
        """Create a user and return its id. Raises DuplicateEmailError if taken."""
        email = normalize_email(email)
        user_id = await self.ids.next(ids.USERS)
        user = {
            "id": user_id,
            "full_name": full_name,
            "email": email,
            "password_hash": password_hash,
            "created_at": self._timestamp(),
            "last_login": None,
        }
        if not await self.backend.set(keys.user_by_email(email), user, nx=True):
            raise DuplicateEmailError("User with this email already exists")
        await self.backend.set(keys.user_by_id(user_id), user)
        return user_id

    async def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        return await self.backend.get(keys.user_by_email(normalize_email(email)))

    async def get_user_by_id(self, user_id: int) -> Optional[Dict[str, Any]]:
        return await self.backend.get(keys.user_by_id(user_id))

    async def update_last_login(self, user_id: int) -> None:
        """Stamp last_login on both the id-keyed and email-keyed copies."""
        user = await self.backend.get(keys.user_by_id(user_id))
        if not user:
            return
        user["last_login"] = self._timestamp()
        await self.backend.set(keys.user_by_id(user_id), user)
        await self.backend.set(keys.user_by_email(user["email"]), user)

    # ---- Sessions ----

    async def create_session(
        self,
        user_id: int,
        session_token: str,
        expires_at: str,
        user: Mapping[str, Any],
    ) -> int:
        """Store a session; email and full name are snapshotted from ``user``."""
        session = {
            "id": await self.ids.next(ids.SESSIONS),
            "user_id": user_id,
            "session_token": session_token,
            "expires_at": expires_at,
            "email": user["email"],
            "full_name": user["full_name"],
        }
        await self.backend.set(keys.session(session_token), session, ex=self._session_ttl_seconds(expires_at))
        return session["id"]

    def _session_ttl_seconds(self, expires_at: str) -> int:
        """Backend expiry hint: the configured session lifetime, never shorter
        than the time left until ``expires_at``."""
        configured = int(self.auth.session_ttl_hours * 3600) or SESSION_TTL_SECONDS
        remaining = math.ceil((parse_timestamp(expires_at) - self.now()).total_seconds())
        return max(configured, remaining, 1)

    async def get_session_by_token(self, session_token: str) -> Optional[Dict[str, Any]]:
        """Return the session if it exists and has not expired.

        An expired session is deleted by the lookup that finds it.
        """
        session = await self.backend.get(keys.session(session_token))
        if not session:
            return None
        if parse_timestamp(session["expires_at"]) <= self.now():
            logger.debug("Evicting expired session %s", session.get("id"))
            await self.backend.delete(keys.session(session_token))
            return None
        return session

    async def delete_session(self, session_token: str) -> None:
        await self.backend.delete(keys.session(session_token))

    async def get_user_id_from_authorization(self, authorization: Optional[str]) -> Optional[int]:
        """Resolve an Authorization header to a user id (None if not logged in)."""
        token = bearer_token(authorization)
        if not token:
            return None
        session = await self.get_session_by_token(token)
        return session["user_id"] if session else None

    # ---- Documents ----

    async def save_document(
        self,
        user_id: int,
        title: str,
        original_text: str,
        file_type: str = "text",
    ) -> int:
        document_id = await self.ids.next(ids.DOCUMENTS)
        record = {
            "id": document_id,
            "user_id": user_id,
            "title": title,
            "original_text": original_text,
            "file_type": file_type,
            "word_count": count_words(original_text),
            "upload_date": self._timestamp(),
        }
        await self.backend.set(keys.document(document_id), record)
        await self.backend.lpush(keys.user_documents(user_id), document_id)
        return document_id

    async def list_documents(self, user_id: int, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest-first document summaries (no text)."""
        limit = self.list_limit if limit is None else limit
        document_ids = await self.backend.lrange(keys.user_documents(user_id), 0, limit - 1) if limit > 0 else []
        documents = []
        for document_id in document_ids:
            record = await self.backend.get(keys.document(document_id))
            if not record:
                continue
            documents.append({
                "id": record["id"],
                "title": record["title"],
                "file_type": record["file_type"],
                "word_count": record["word_count"],
                "upload_date": record["upload_date"],
            })
        return documents

    async def get_document(self, document_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        record = await self.backend.get(keys.document(document_id))
        if not record or record["user_id"] != user_id:
            return None
        return record

    async def delete_document(self, document_id: int, user_id: int) -> bool:
        """Delete a document. Reviewers generated from it are kept."""
        if await self.get_document(document_id, user_id) is None:
            return False
        await self.backend.delete(keys.document(document_id))
        await self.backend.lrem(keys.user_documents(user_id), document_id)
        return True

    # ---- Reviewers ----

    async def save_reviewer(self, user_id: int, document_id: int, reviewer_data: Mapping[str, Any]) -> int:
        reviewer_id = await self.ids.next(ids.REVIEWERS)
        record = {
            "id": reviewer_id,
            "user_id": user_id,
            "document_id": document_id,
            "title": reviewer_data.get("title"),
            "sections": reviewer_data.get("sections"),
            "concepts": reviewer_data.get("concepts"),
            "metadata": reviewer_data.get("metadata"),
            "original_text": reviewer_data.get("originalText"),
            "generated_at": self._timestamp(),
        }
        await self.backend.set(keys.reviewer(reviewer_id), record)
        await self.backend.lpush(keys.user_reviewers(user_id), reviewer_id)
        return reviewer_id

    async def get_all_reviewers(self, user_id: int, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest-first reviewer summaries; ids with no record are skipped."""
        limit = self.list_limit if limit is None else limit
        reviewer_ids = await self.backend.lrange(keys.user_reviewers(user_id), 0, limit - 1) if limit > 0 else []
        reviewers = []
        for reviewer_id in reviewer_ids:
            reviewer = await self.backend.get(keys.reviewer(reviewer_id))
            if not reviewer:
                continue
            metadata = reviewer.get("metadata") or {}
            reviewers.append({
                "id": reviewer["id"],
                "title": reviewer["title"],
                "generated_at": reviewer["generated_at"],
                "word_count": _as_count(metadata.get("wordCount")),
            })
        return reviewers

    async def get_reviewer(self, reviewer_id: int, user_id: int) -> Optional[Dict[str, Any]]:
        reviewer = await self.backend.get(keys.reviewer(reviewer_id))
        if not reviewer or reviewer["user_id"] != user_id:
            return None
        return reviewer

    async def delete_reviewer(self, reviewer_id: int, user_id: int) -> bool:
        """Delete a reviewer, its quiz question set and its index entry.

        The source document is left in place.
        """
        if await self.get_reviewer(reviewer_id, user_id) is None:
            return False
        await self.backend.delete(keys.reviewer(reviewer_id))
        await self.backend.delete(keys.quiz(reviewer_id))
        await self.backend.lrem(keys.user_reviewers(user_id), reviewer_id)
        logger.info("Deleted reviewer %s for user %s", reviewer_id, user_id)
        return True

    # ---- Quiz ----

    async def save_quiz_questions(self, reviewer_id: int, questions: Any) -> bool:
        """Store the question set for a reviewer, replacing any previous one."""
        await self.backend.set(keys.quiz(reviewer_id), questions)
        return True

    async def get_quiz_questions(self, reviewer_id: int) -> Any:
        return await self.backend.get(keys.quiz(reviewer_id))

    async def save_quiz_attempt(self, user_id: int, reviewer_id: Optional[int], attempt_data: Mapping[str, Any]) -> int:
        attempt_id = await self.ids.next(ids.ATTEMPTS)
        attempt = {
            "id": attempt_id,
            "user_id": user_id,
            "reviewer_id": reviewer_id,
            "quiz_type": attempt_data.get("quizType"),
            "difficulty": attempt_data.get("difficulty"),
            "total_questions": attempt_data.get("totalQuestions"),
            "correct_answers": attempt_data.get("correctAnswers"),
            "wrong_answers": attempt_data.get("wrongAnswers"),
            "percentage": attempt_data.get("percentage"),
            "time_taken": attempt_data.get("timeTaken"),
            "completed_at": self._timestamp(),
        }
        await self.backend.lpush(keys.user_attempts(user_id), attempt)
        return attempt_id

    async def list_quiz_attempts(self, user_id: int, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Newest-first attempts; ``limit=None`` returns all of them."""
        stop = -1 if limit is None else limit - 1
        if limit is not None and limit <= 0:
            return []
        return await self.backend.lrange(keys.user_attempts(user_id), 0, stop)

    # ---- Statistics ----

    async def get_statistics(self, user_id: int) -> Dict[str, Any]:
        documents = await self.backend.llen(keys.user_documents(user_id))
        reviewers = await self.backend.llen(keys.user_reviewers(user_id))
        attempts = await self.backend.lrange(keys.user_attempts(user_id), 0, -1)
        total = sum(a.get("percentage") or 0 for a in attempts)
        return {
            "documents": documents,
            "reviewers": reviewers,
            "quizAttempts": len(attempts),
            "annotations": 0,
            "avgQuizScore": total / len(attempts) if attempts else 0,
        }

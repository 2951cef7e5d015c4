"""Pydantic request/response schemas for the SciBrain API.

The wire format is camelCase; models use snake_case attributes with camel
aliases and accept either form on input.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---- Auth ----

class SignupRequest(CamelModel):
    # Missing fields are reported as 400 by the route, not as 422
    full_name: str = ""
    email: str = ""
    password: str = ""


class LoginRequest(CamelModel):
    email: str = ""
    password: str = ""


class AuthResponse(CamelModel):
    success: bool = True
    user_id: int
    email: str
    full_name: str
    session_token: str


class VerifyResponse(CamelModel):
    valid: bool
    user_id: Optional[int] = None
    email: Optional[str] = None
    full_name: Optional[str] = None


class SuccessResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None


# ---- Health ----

class HealthResponse(CamelModel):
    status: str
    message: str
    ai_provider: str
    storage: str


# ---- Generation ----

class GenerateReviewerRequest(CamelModel):
    text: str = ""
    title: str = "Untitled"


class GenerateQuestionsRequest(CamelModel):
    text: str = ""
    concepts: List[Any] = Field(default_factory=list)
    reviewer_id: Optional[int] = None


# ---- Reviewers ----

class ReviewerSummary(BaseModel):
    id: int
    title: Optional[str] = None
    generated_at: str
    word_count: int = 0


class ReviewerResponse(CamelModel):
    id: int
    user_id: int
    document_id: Optional[int] = None
    title: Optional[str] = None
    sections: Any = None
    concepts: Any = None
    metadata: Any = None
    original_text: Optional[str] = None
    generated_at: str


# ---- Documents ----

class DocumentSummary(BaseModel):
    id: int
    title: Optional[str] = None
    file_type: str
    word_count: int
    upload_date: str


class DocumentResponse(BaseModel):
    id: int
    user_id: int
    title: Optional[str] = None
    original_text: str
    file_type: str
    word_count: int
    upload_date: str


# ---- Quiz ----

class QuizAttemptRequest(CamelModel):
    reviewer_id: Optional[int] = None
    quiz_type: Optional[str] = None
    difficulty: Optional[str] = None
    total_questions: Optional[int] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    percentage: Optional[float] = None
    time_taken: Optional[float] = None


class QuizAttemptResponse(CamelModel):
    success: bool = True
    attempt_id: int


class QuizAttempt(BaseModel):
    id: int
    user_id: int
    reviewer_id: Optional[int] = None
    quiz_type: Optional[str] = None
    difficulty: Optional[str] = None
    total_questions: Optional[int] = None
    correct_answers: Optional[int] = None
    wrong_answers: Optional[int] = None
    percentage: Optional[float] = None
    time_taken: Optional[float] = None
    completed_at: str


# ---- Statistics ----

class StatisticsResponse(BaseModel):
    documents: int
    reviewers: int
    quizAttempts: int
    annotations: int
    avgQuizScore: float


def attempt_payload(body: QuizAttemptRequest) -> Dict[str, Any]:
    """Attempt fields in the camelCase shape the storage facade expects."""
    return body.model_dump(by_alias=True, exclude={"reviewer_id"})

"""FastAPI application -- routes for the SciBrain study-notes API."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError

from scibrain.__version__ import __version__
from scibrain.auth import get_current_user_id
from scibrain.config import Settings
from scibrain.dependencies import current_storage, get_generator, get_settings, get_storage
from scibrain.schemas import (
    AuthResponse,
    DocumentResponse,
    DocumentSummary,
    GenerateQuestionsRequest,
    GenerateReviewerRequest,
    HealthResponse,
    LoginRequest,
    QuizAttempt,
    QuizAttemptRequest,
    QuizAttemptResponse,
    ReviewerResponse,
    ReviewerSummary,
    SignupRequest,
    StatisticsResponse,
    SuccessResponse,
    VerifyResponse,
    attempt_payload,
)
from scibrain.services.generation import StudyGenerationError, StudyGenerator
from scibrain.storage import DuplicateEmailError, Storage, bearer_token

logger = logging.getLogger("scibrain")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan: storage is built lazily on first request, closed on shutdown."""
    ts = datetime.utcnow().isoformat() + "Z"
    logger.info("[%s] Startup: SciBrain API %s", ts, __version__)
    yield
    storage = current_storage()
    if storage is not None:
        await storage.close()
    ts_end = datetime.utcnow().isoformat() + "Z"
    logger.info("[%s] Shutdown: complete", ts_end)


app = FastAPI(title="SciBrain", version=__version__, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().cors_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


@app.exception_handler(RedisError)
async def storage_error_handler(request: Request, exc: RedisError):
    logger.exception("Storage backend error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(StudyGenerationError)
async def generation_error_handler(request: Request, exc: StudyGenerationError):
    logger.error("Generation failed (%s): %s", exc.kind, exc.message)
    return JSONResponse(status_code=502, content={"detail": exc.message, "kind": exc.kind})


# ---- Health (no auth, no backend calls) ----

@app.get("/health", response_model=HealthResponse)
def health(settings: Settings = Depends(get_settings)):
    return {
        "status": "ok",
        "message": "SciBrain API running",
        "ai_provider": settings.ai_provider,
        "storage": settings.storage_name,
    }


# ---- Auth ----

@app.post("/auth/signup", response_model=AuthResponse, status_code=201)
async def auth_signup(body: SignupRequest, storage: Storage = Depends(get_storage)):
    auth = storage.auth
    full_name = auth.sanitize_input(body.full_name)
    email = auth.sanitize_input(body.email).lower()
    password = body.password

    if not full_name or not email or not password:
        raise HTTPException(status_code=400, detail="All fields are required")
    if not auth.is_valid_email(email):
        raise HTTPException(status_code=400, detail="Invalid email format")
    if await storage.get_user_by_email(email):
        raise HTTPException(status_code=409, detail="User with this email already exists")

    try:
        user_id = await storage.create_user(full_name, email, auth.hash_password(password))
    except DuplicateEmailError as e:
        raise HTTPException(status_code=409, detail=str(e))
    user = await storage.get_user_by_id(user_id)

    token = auth.generate_session_token()
    await storage.create_session(user_id, token, auth.generate_session_expiry(storage.now()), user)
    return {
        "user_id": user_id,
        "email": email,
        "full_name": full_name,
        "session_token": token,
    }


@app.post("/auth/login", response_model=AuthResponse)
async def auth_login(body: LoginRequest, storage: Storage = Depends(get_storage)):
    auth = storage.auth
    email = auth.sanitize_input(body.email).lower()
    if not email or not body.password:
        raise HTTPException(status_code=400, detail="Email and password are required")

    user = await storage.get_user_by_email(email)
    if not user or not auth.verify_password(body.password, user["password_hash"]):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    await storage.update_last_login(user["id"])
    token = auth.generate_session_token()
    await storage.create_session(user["id"], token, auth.generate_session_expiry(storage.now()), user)
    return {
        "user_id": user["id"],
        "email": user["email"],
        "full_name": user["full_name"],
        "session_token": token,
    }


@app.post("/auth/logout", response_model=SuccessResponse, response_model_exclude_none=True)
async def auth_logout(
    authorization: Optional[str] = Header(None),
    storage: Storage = Depends(get_storage),
):
    token = bearer_token(authorization)
    if token:
        await storage.delete_session(token)
    return {"success": True}


@app.get("/auth/verify", response_model=VerifyResponse)
async def auth_verify(
    authorization: Optional[str] = Header(None),
    storage: Storage = Depends(get_storage),
):
    token = bearer_token(authorization)
    session = await storage.get_session_by_token(token) if token else None
    if not session:
        return JSONResponse(status_code=401, content={"valid": False})
    return {
        "valid": True,
        "user_id": session["user_id"],
        "email": session["email"],
        "full_name": session["full_name"],
    }


# ---- Generation ----

@app.post("/generate-reviewer")
async def generate_reviewer(
    body: GenerateReviewerRequest,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    generator: StudyGenerator = Depends(get_generator),
):
    """Generate a reviewer, then save the source document and the reviewer."""
    title = body.title or "Untitled"
    reviewer_data = await generator.generate_reviewer(body.text, title)
    document_id = await storage.save_document(user_id, title, body.text, "text")
    reviewer_id = await storage.save_reviewer(user_id, document_id, reviewer_data)
    return {**reviewer_data, "documentId": document_id, "reviewerId": reviewer_id}


@app.post("/generate-questions")
async def generate_questions(
    body: GenerateQuestionsRequest,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
    generator: StudyGenerator = Depends(get_generator),
):
    """Generate quiz questions; stored against the reviewer when the caller owns it."""
    questions = await generator.generate_quiz_questions(body.text, body.concepts)
    if body.reviewer_id is not None:
        if await storage.get_reviewer(body.reviewer_id, user_id) is not None:
            await storage.save_quiz_questions(body.reviewer_id, questions)
    return questions


# ---- Reviewers ----

@app.get("/reviewers", response_model=List[ReviewerSummary])
async def list_reviewers(
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_all_reviewers(user_id)


@app.get("/reviewer/{reviewer_id}", response_model=ReviewerResponse)
async def get_reviewer(
    reviewer_id: int,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    reviewer = await storage.get_reviewer(reviewer_id, user_id)
    if reviewer is None:
        raise HTTPException(status_code=404, detail="Reviewer not found")
    return reviewer


@app.delete("/reviewer/{reviewer_id}", response_model=SuccessResponse)
async def delete_reviewer(
    reviewer_id: int,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    if not await storage.delete_reviewer(reviewer_id, user_id):
        raise HTTPException(status_code=404, detail="Reviewer not found")
    return {"success": True, "message": "Reviewer deleted"}


# ---- Quiz ----

@app.get("/quiz-questions/{reviewer_id}")
async def get_quiz_questions(
    reviewer_id: int,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
) -> Any:
    if await storage.get_reviewer(reviewer_id, user_id) is None:
        raise HTTPException(status_code=404, detail="Reviewer not found")
    questions = await storage.get_quiz_questions(reviewer_id)
    return questions if questions is not None else {}


@app.post("/quiz-attempt", response_model=QuizAttemptResponse)
async def save_quiz_attempt(
    body: QuizAttemptRequest,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    attempt_id = await storage.save_quiz_attempt(user_id, body.reviewer_id, attempt_payload(body))
    return {"attempt_id": attempt_id}


@app.get("/quiz-attempts", response_model=List[QuizAttempt])
async def list_quiz_attempts(
    limit: Optional[int] = None,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.list_quiz_attempts(user_id, limit=limit)


# ---- Documents ----

@app.get("/documents", response_model=List[DocumentSummary])
async def list_documents(
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.list_documents(user_id)


@app.get("/document/{document_id}", response_model=DocumentResponse)
async def get_document(
    document_id: int,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    document = await storage.get_document(document_id, user_id)
    if document is None:
        raise HTTPException(status_code=404, detail="Document not found")
    return document


@app.delete("/document/{document_id}", response_model=SuccessResponse)
async def delete_document(
    document_id: int,
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    if not await storage.delete_document(document_id, user_id):
        raise HTTPException(status_code=404, detail="Document not found")
    return {"success": True, "message": "Document deleted"}


# ---- Statistics ----

@app.get("/statistics", response_model=StatisticsResponse)
async def statistics(
    user_id: int = Depends(get_current_user_id),
    storage: Storage = Depends(get_storage),
):
    return await storage.get_statistics(user_id)

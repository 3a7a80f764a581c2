"""HTTP API for feedback capture, the dashboard and signup administration."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Literal, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Query, Request, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, EmailStr, Field
from pymongo.errors import PyMongoError

from .accounts import AccountManager
from .config import STORAGE_MONGODB, Settings, load_settings, resolve_storage_mode
from .connector import MongoConnector
from .errors import (
    AuthenticationError,
    BackendUnavailableError,
    ConflictError,
    FeedbackHubError,
    NotFoundError,
    ValidationError,
)
from .feedback import FeedbackStore, build_feedback_store, seed_sample_feedback
from .models import (
    HIGH_RATING,
    LOW_RATING,
    Feedback,
    FeedbackSubmission,
    SignupRequest,
    SignupStatus,
    User,
    category_for_rating,
)
from .notifier import WebhookNotifier
from .security import SESSION_COOKIE_NAME, SessionAuth, require_super_user
from .sessions import SessionManager

logger = logging.getLogger("feedbackhub.service")

_RATING_MESSAGES = {
    HIGH_RATING: "Rating must be 4 or 5 for high-rating feedback",
    LOW_RATING: "Rating must be 1, 2, or 3 for low-rating feedback",
}


class FeedbackSubmitRequest(BaseModel):
    email: EmailStr
    rating: int
    text: str = Field(..., min_length=1, max_length=5000)
    name: Optional[str] = Field(default=None, max_length=200)


class FeedbackView(BaseModel):
    id: str
    email: str
    rating: int
    text: str
    name: Optional[str] = None
    category: str
    created_at: datetime
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    invited_by: List[str] = Field(default_factory=list)
    is_invited: bool = False


class FeedbackListResponse(BaseModel):
    items: List[FeedbackView]
    total: int
    page: int
    page_size: int
    total_pages: int


class CategoryStatsView(BaseModel):
    count: int
    avg_rating: float


class InvitationStatsView(BaseModel):
    invited: int
    not_invited: int
    total: int
    ratio_percent: float


class FeedbackStatsResponse(BaseModel):
    total: int
    by_category: Dict[str, CategoryStatsView]
    invitation_stats: InvitationStatsView


class BulkDeleteRequest(BaseModel):
    ids: List[str] = Field(..., min_length=1)


class SignupPayload(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    name: Optional[str] = Field(default=None, max_length=200)


class LoginPayload(BaseModel):
    email: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)


class ChangePasswordPayload(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1)


class UserView(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    is_super_user: bool
    is_approved: bool
    is_active: bool
    created_at: datetime


class SignupRequestView(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    status: SignupStatus
    created_at: datetime
    updated_at: datetime
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None


def _feedback_to_view(feedback: Feedback) -> FeedbackView:
    return FeedbackView(
        id=feedback.id,
        email=feedback.email,
        rating=feedback.rating,
        text=feedback.text,
        name=feedback.name,
        category=feedback.category,
        created_at=feedback.created_at,
        source_ip=feedback.source_ip,
        user_agent=feedback.user_agent,
        invited_by=list(feedback.invited_by),
        is_invited=feedback.is_invited,
    )


def _user_to_view(user: User) -> UserView:
    return UserView(
        id=user.id,
        email=user.email,
        name=user.name,
        is_super_user=user.is_super_user,
        is_approved=user.is_approved,
        is_active=user.is_active,
        created_at=user.created_at,
    )


def _request_to_view(request: SignupRequest) -> SignupRequestView:
    return SignupRequestView(
        id=request.id,
        email=request.email,
        name=request.name,
        status=request.status,
        created_at=request.created_at,
        updated_at=request.updated_at,
        decided_by=request.decided_by,
        decided_at=request.decided_at,
    )


def _to_http(exc: FeedbackHubError) -> HTTPException:
    if isinstance(exc, ValidationError):
        code = status.HTTP_400_BAD_REQUEST
    elif isinstance(exc, AuthenticationError):
        code = status.HTTP_401_UNAUTHORIZED
    elif isinstance(exc, NotFoundError):
        code = status.HTTP_404_NOT_FOUND
    elif isinstance(exc, ConflictError):
        code = status.HTTP_409_CONFLICT
    else:
        code = status.HTTP_503_SERVICE_UNAVAILABLE
    return HTTPException(status_code=code, detail=str(exc))


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip() or "unknown"
    return request.headers.get("x-real-ip") or "unknown"


def register_exception_handlers(app: FastAPI) -> None:
    """Report database outages as 503 instead of a bare 500."""

    @app.exception_handler(PyMongoError)
    async def database_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
        logger.error("Database error on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": "Database unavailable"},
        )

    @app.exception_handler(BackendUnavailableError)
    async def backend_unavailable_handler(request: Request, exc: BackendUnavailableError) -> JSONResponse:
        logger.error("Backend unavailable on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"detail": str(exc)},
        )


def register_feedback_routes(
    app: FastAPI,
    store: FeedbackStore,
    notifier: WebhookNotifier,
    *,
    settings: Settings,
    current_user,
) -> None:
    """Public submission endpoints plus the authenticated dashboard API."""

    def _submit(
        category: str,
        body: FeedbackSubmitRequest,
        request: Request,
        background: BackgroundTasks,
    ) -> FeedbackView:
        try:
            matches = category_for_rating(body.rating) == category
        except ValueError:
            matches = False
        if not matches:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_RATING_MESSAGES[category])
        text = body.text.strip()
        if not text:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Feedback text is required")

        feedback = store.create(
            FeedbackSubmission(
                email=str(body.email),
                rating=body.rating,
                text=text,
                category=category,
                name=(body.name or "").strip() or None,
                source_ip=_client_ip(request),
                user_agent=request.headers.get("user-agent") or "unknown",
            )
        )
        logger.info(
            "Stored %s feedback %s (rating=%s) via %s store",
            category,
            feedback.id,
            feedback.rating,
            store.backend_name,
        )
        if notifier.enabled:
            background.add_task(notifier.send, feedback)
        return _feedback_to_view(feedback)

    @app.post(
        "/v1/feedback/high-rating",
        status_code=status.HTTP_201_CREATED,
        response_model=FeedbackView,
    )
    def submit_high_rating(
        body: FeedbackSubmitRequest,
        request: Request,
        background: BackgroundTasks,
    ) -> FeedbackView:
        return _submit(HIGH_RATING, body, request, background)

    @app.post(
        "/v1/feedback/low-rating",
        status_code=status.HTTP_201_CREATED,
        response_model=FeedbackView,
    )
    def submit_low_rating(
        body: FeedbackSubmitRequest,
        request: Request,
        background: BackgroundTasks,
    ) -> FeedbackView:
        return _submit(LOW_RATING, body, request, background)

    @app.get("/v1/feedback", response_model=FeedbackListResponse)
    def list_feedback(
        page: int = Query(1),
        limit: Optional[int] = Query(None),
        category: Optional[Literal["high-rating", "low-rating"]] = Query(None, alias="type"),
        email: Optional[str] = Query(None),
        user: User = Depends(current_user),
    ) -> FeedbackListResponse:
        if email:
            items = store.list_by_email(email)
            return FeedbackListResponse(
                items=[_feedback_to_view(item) for item in items],
                total=len(items),
                page=1,
                page_size=len(items),
                total_pages=1 if items else 0,
            )

        try:
            result = store.list(page=page, page_size=limit, category=category)
        except ValidationError as exc:
            raise _to_http(exc) from exc
        return FeedbackListResponse(
            items=[_feedback_to_view(item) for item in result.items],
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            total_pages=result.total_pages,
        )

    @app.get("/v1/feedback/stats", response_model=FeedbackStatsResponse)
    def feedback_stats(user: User = Depends(current_user)) -> FeedbackStatsResponse:
        stats = store.stats()
        invitations = store.invitation_stats()
        return FeedbackStatsResponse(
            total=stats.total,
            by_category={
                category: CategoryStatsView(count=entry.count, avg_rating=entry.avg_rating)
                for category, entry in stats.by_category.items()
            },
            invitation_stats=InvitationStatsView(
                invited=invitations.invited,
                not_invited=invitations.not_invited,
                total=invitations.total,
                ratio_percent=invitations.ratio_percent,
            ),
        )

    def _require_development() -> None:
        if settings.is_production:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Sample data is only available outside production",
            )

    @app.post("/v1/feedback/sample", status_code=status.HTTP_201_CREATED)
    def add_sample_feedback(user: User = Depends(current_user)) -> Dict[str, int]:
        _require_development()
        created = seed_sample_feedback(store)
        logger.info("User %s added %s sample feedback records", user.id, len(created))
        return {"created": len(created)}

    @app.delete("/v1/feedback/sample")
    def clear_feedback(user: User = Depends(current_user)) -> Dict[str, bool]:
        _require_development()
        store.clear()
        logger.warning("User %s cleared all feedback records", user.id)
        return {"cleared": True}

    @app.post("/v1/feedback/bulk-delete")
    def bulk_delete_feedback(
        body: BulkDeleteRequest,
        user: User = Depends(current_user),
    ) -> Dict[str, int]:
        deleted = store.delete_many(body.ids)
        logger.info("User %s deleted %s of %s feedback records", user.id, deleted, len(body.ids))
        return {"deleted": deleted}

    @app.delete("/v1/feedback/{feedback_id}")
    def delete_feedback(feedback_id: str, user: User = Depends(current_user)) -> Dict[str, bool]:
        if not store.delete(feedback_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feedback not found")
        logger.info("User %s deleted feedback %s", user.id, feedback_id)
        return {"deleted": True}

    @app.post("/v1/feedback/{feedback_id}/invitation")
    def toggle_invitation(feedback_id: str, user: User = Depends(current_user)) -> Dict[str, bool]:
        if not store.toggle_invitation(feedback_id, user.id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Feedback not found")
        return {"toggled": True}


def register_account_routes(
    app: FastAPI,
    accounts: AccountManager,
    sessions: SessionManager,
    *,
    settings: Settings,
    current_user,
) -> None:
    """Signup, sign-in, password management and signup review."""

    super_user = require_super_user(current_user)

    @app.post("/v1/init")
    def initialise() -> Dict[str, object]:
        seeded = accounts.seed_super_user()
        return {
            "configured": seeded is not None,
            "super_user_email": seeded.email if seeded is not None else None,
        }

    @app.post(
        "/v1/auth/signup",
        status_code=status.HTTP_201_CREATED,
        response_model=SignupRequestView,
    )
    def signup(body: SignupPayload) -> SignupRequestView:
        try:
            request = accounts.register_user(str(body.email), body.password, body.name)
        except (ValidationError, ConflictError) as exc:
            raise _to_http(exc) from exc
        return _request_to_view(request)

    @app.post("/v1/auth/login", response_model=UserView)
    def login(body: LoginPayload, request: Request, response: Response) -> UserView:
        try:
            user = accounts.login(body.email, body.password)
        except AuthenticationError as exc:
            raise _to_http(exc) from exc

        existing = request.cookies.get(SESSION_COOKIE_NAME)
        if existing:
            sessions.destroy(existing)
        token = sessions.create(user.id)
        response.set_cookie(
            SESSION_COOKIE_NAME,
            token,
            max_age=sessions.cookie_max_age,
            secure=settings.secure_cookies,
            httponly=True,
            samesite="lax",
            path="/",
        )
        return _user_to_view(user)

    @app.post("/v1/auth/logout")
    async def logout(request: Request, response: Response) -> Dict[str, bool]:
        token = request.cookies.get(SESSION_COOKIE_NAME)
        if token:
            sessions.destroy(token)
        response.delete_cookie(SESSION_COOKIE_NAME, path="/")
        return {"success": True}

    @app.get("/v1/auth/me", response_model=UserView)
    async def me(user: User = Depends(current_user)) -> UserView:
        return _user_to_view(user)

    @app.post("/v1/auth/change-password")
    def change_password(
        body: ChangePasswordPayload,
        request: Request,
        user: User = Depends(current_user),
    ) -> Dict[str, bool]:
        try:
            accounts.change_password(user.id, body.current_password, body.new_password)
        except FeedbackHubError as exc:
            raise _to_http(exc) from exc
        sessions.revoke_user(user.id, keep=getattr(request.state, "session_token", None))
        return {"success": True}

    @app.get("/v1/admin/signup-requests", response_model=List[SignupRequestView])
    def list_signup_requests(
        status_filter: Optional[SignupStatus] = Query(None, alias="status"),
        user: User = Depends(super_user),
    ) -> List[SignupRequestView]:
        return [_request_to_view(item) for item in accounts.list_signup_requests(status_filter)]

    @app.post("/v1/admin/signup-requests/{request_id}/approve", response_model=UserView)
    def approve_signup_request(request_id: str, user: User = Depends(super_user)) -> UserView:
        try:
            created = accounts.approve(request_id, user.id)
        except FeedbackHubError as exc:
            raise _to_http(exc) from exc
        return _user_to_view(created)

    @app.post("/v1/admin/signup-requests/{request_id}/reject", response_model=SignupRequestView)
    def reject_signup_request(request_id: str, user: User = Depends(super_user)) -> SignupRequestView:
        try:
            rejected = accounts.reject(request_id, user.id)
        except FeedbackHubError as exc:
            raise _to_http(exc) from exc
        return _request_to_view(rejected)


def create_app(
    *,
    settings: Settings | None = None,
    connector: MongoConnector | None = None,
    feedback_store: FeedbackStore | None = None,
    accounts: AccountManager | None = None,
    notifier: WebhookNotifier | None = None,
    session_manager: SessionManager | None = None,
) -> FastAPI:
    """Instantiate the FastAPI application with the supplied collaborators."""

    app_settings = settings or load_settings()
    db_connector = connector or MongoConnector.from_settings(app_settings)
    store = feedback_store or build_feedback_store(app_settings, db_connector)
    account_manager = accounts or AccountManager(db_connector, app_settings)
    event_notifier = notifier or WebhookNotifier.from_settings(app_settings)
    sessions = session_manager or SessionManager(ttl=timedelta(hours=app_settings.session_ttl_hours))

    if not app_settings.secure_cookies:
        logger.warning(
            "Session cookies are not marked as secure. Only disable secure cookies for"
            " local development."
        )

    app = FastAPI(
        title="FeedbackHub API",
        version="0.1.0",
        description="Feedback capture, review dashboard and account approval.",
    )
    app.state.settings = app_settings
    app.state.connector = db_connector
    app.state.feedback_store = store
    app.state.accounts = account_manager
    app.state.notifier = event_notifier
    app.state.session_manager = sessions

    register_exception_handlers(app)

    @app.get("/healthz")
    async def healthcheck() -> Dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/storage-status")
    def storage_status() -> Dict[str, object]:
        try:
            feedback_count = store.list(page=1, page_size=1).total
            storage_test = "success"
        except Exception as exc:
            logger.error("Storage self-test failed: %s", exc)
            feedback_count = 0
            storage_test = "failed"
        mode = resolve_storage_mode(app_settings)
        return {
            "environment": app_settings.environment,
            "storage_mode": mode,
            "backend": store.backend_name,
            "mongodb_configured": db_connector.configured,
            "mongodb_reachable": db_connector.ping() if mode == STORAGE_MONGODB else None,
            "force_file_storage": app_settings.force_file_storage,
            "feedback_count": feedback_count,
            "storage_test": storage_test,
        }

    current_user = SessionAuth(sessions, account_manager)
    register_feedback_routes(app, store, event_notifier, settings=app_settings, current_user=current_user)
    register_account_routes(app, account_manager, sessions, settings=app_settings, current_user=current_user)

    return app


__all__ = ["create_app", "register_account_routes", "register_feedback_routes"]

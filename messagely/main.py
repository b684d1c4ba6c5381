import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Response, Request, Depends, status
from fastapi.exception_handlers import request_validation_exception_handler
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from messagely import storage
from messagely.auth import AuthService
from messagely.config import get_settings
from messagely.dependencies import ensure_logged_in, get_auth_service
from messagely.errors import (
    BadRequestError,
    ConflictError,
    InternalError,
    MessagelyError,
    UnauthorizedError,
)
from messagely.logging_utils import setup_logging, RequestLoggingMiddleware, log_auth_data
from messagely.metrics import record_auth_outcome, get_metrics, get_metrics_content_type
from messagely.schemas import (
    ErrorResponse,
    HealthResponse,
    LoginRequest,
    MessageCreateRequest,
    MessageCreateResponse,
    MessageOut,
    ReceivedMessagesResponse,
    RegisterRequest,
    SentMessagesResponse,
    TokenResponse,
    UserDetailResponse,
    UsersListResponse,
)


settings = get_settings()

# Setup structured JSON logging
setup_logging(settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.
    - Startup: Initialize database and create tables
    """
    storage.init_db()
    logger.info("Messagely API started")
    yield
    logger.info("Messagely API shutting down")


app = FastAPI(
    title="Messagely API",
    description="Users register, log in, and exchange messages",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestLoggingMiddleware)


# =============================================================================
# Error Handlers
# =============================================================================

@app.exception_handler(MessagelyError)
async def messagely_error_handler(request: Request, exc: MessagelyError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__}: {exc.message}")

    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, UnauthorizedError) else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message},
        headers=headers,
    )


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"Database error: {exc}")
    internal = InternalError()
    return JSONResponse(status_code=internal.status_code, content={"detail": internal.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Auth bodies with wrong-typed fields are a 400 like any other bad credential input."""
    if not request.url.path.startswith("/auth/"):
        return await request_validation_exception_handler(request, exc)

    action = request.url.path.rsplit("/", 1)[-1]
    record_auth_outcome(action, "bad_request")
    log_auth_data(request, username=None, result="bad_request")

    fields = sorted({str(error["loc"][-1]) for error in exc.errors() if error.get("loc")})
    bad_request = BadRequestError(f"Malformed fields: {', '.join(fields)}" if fields else None)
    logger.warning(f"BadRequestError: {bad_request.message}")
    return JSONResponse(status_code=bad_request.status_code, content={"detail": bad_request.message})


def _auth_result(exc: Exception) -> str:
    if isinstance(exc, BadRequestError):
        return "bad_request"
    if isinstance(exc, UnauthorizedError):
        return "unauthorized"
    if isinstance(exc, ConflictError):
        return "conflict"
    return "error"


ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Missing or malformed input"},
    401: {"model": ErrorResponse, "description": "Not authenticated / bad credentials"},
    404: {"model": ErrorResponse, "description": "No such user"},
    409: {"model": ErrorResponse, "description": "Username already taken"},
}


# =============================================================================
# Health Check Routes
# =============================================================================

@app.get("/health/live", response_model=HealthResponse)
async def health_live() -> HealthResponse:
    """Liveness probe - always returns 200 once the app is running."""
    return HealthResponse(status="ok")


@app.get("/health/ready", response_model=HealthResponse)
def health_ready(response: Response) -> HealthResponse:
    """
    Readiness probe - returns 200 only if:
    1. SECRET_KEY is set (non-empty)
    2. DB is reachable and both tables exist

    Otherwise returns 503 (Service Unavailable).
    """
    if not settings.SECRET_KEY:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(status="not_ready", reason="SECRET_KEY not configured")

    if not storage.check_db_health():
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        return HealthResponse(
            status="not_ready",
            reason="Database not reachable or schema not applied"
        )

    return HealthResponse(status="ready")


# =============================================================================
# Auth Routes
# =============================================================================

@app.post("/auth/login", response_model=TokenResponse, responses=ERROR_RESPONSES)
def login(
    request: Request,
    body: LoginRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenResponse:
    """
    Log in with username + password.

    {username, password} => {token}
    """
    try:
        token = auth.login(body.username, body.password)
    except Exception as e:
        result = _auth_result(e)
        record_auth_outcome("login", result)
        log_auth_data(request, username=body.username, result=result)
        raise

    record_auth_outcome("login", "success")
    log_auth_data(request, username=body.username, result="success")
    return TokenResponse(token=token)


@app.post("/auth/register", response_model=TokenResponse, responses=ERROR_RESPONSES)
def register(
    request: Request,
    body: RegisterRequest,
    auth: Annotated[AuthService, Depends(get_auth_service)],
) -> TokenResponse:
    """
    Register a new user and return a token for them.

    {username, password, first_name, last_name, phone} => {token}
    """
    try:
        token = auth.register(body.model_dump())
    except Exception as e:
        result = _auth_result(e)
        record_auth_outcome("register", result)
        log_auth_data(request, username=body.username, result=result)
        raise

    record_auth_outcome("register", "success")
    log_auth_data(request, username=body.username, result="success")
    return TokenResponse(token=token)


# =============================================================================
# User Routes
# =============================================================================

@app.get("/users", response_model=UsersListResponse, responses=ERROR_RESPONSES)
def list_users(
    current_user: Annotated[str, Depends(ensure_logged_in)],
    db: Session = Depends(storage.get_db),
) -> UsersListResponse:
    """
    List all users, ordered by username.

    => {users: [{username, first_name, last_name}, ...]}
    """
    users = storage.list_users(db)
    logger.info(f"GET /users: returned {len(users)} users")
    return UsersListResponse(users=users)


@app.get("/users/{username}", response_model=UserDetailResponse, responses=ERROR_RESPONSES)
def get_user_detail(
    username: str,
    current_user: Annotated[str, Depends(ensure_logged_in)],
    db: Session = Depends(storage.get_db),
) -> UserDetailResponse:
    """
    Profile of one user.

    => {user: {username, first_name, last_name, phone, join_at, last_login_at}}
    """
    return UserDetailResponse(user=storage.get_user(db, username))


@app.get("/users/{username}/to", response_model=ReceivedMessagesResponse, responses=ERROR_RESPONSES)
def get_messages_to(
    username: str,
    current_user: Annotated[str, Depends(ensure_logged_in)],
    db: Session = Depends(storage.get_db),
) -> ReceivedMessagesResponse:
    """
    Messages received by a user, oldest first.

    => {messages: [{id, body, sent_at, read_at,
                    from_user: {username, first_name, last_name, phone}}, ...]}
    """
    messages = storage.list_messages_to(db, username)
    return ReceivedMessagesResponse(messages=messages)


@app.get("/users/{username}/from", response_model=SentMessagesResponse, responses=ERROR_RESPONSES)
def get_messages_from(
    username: str,
    current_user: Annotated[str, Depends(ensure_logged_in)],
    db: Session = Depends(storage.get_db),
) -> SentMessagesResponse:
    """
    Messages sent by a user, oldest first.

    => {messages: [{id, body, sent_at, read_at,
                    to_user: {username, first_name, last_name, phone}}, ...]}
    """
    messages = storage.list_messages_from(db, username)
    return SentMessagesResponse(messages=messages)


# =============================================================================
# Messages Route
# =============================================================================

@app.post("/messages", response_model=MessageCreateResponse, responses=ERROR_RESPONSES)
def send_message(
    body: MessageCreateRequest,
    current_user: Annotated[str, Depends(ensure_logged_in)],
    db: Session = Depends(storage.get_db),
) -> MessageCreateResponse:
    """
    Send a message from the logged-in user.

    {to_username, body} => {message: {id, from_username, to_username, body, sent_at}}
    """
    message = storage.create_message(db, current_user, body.to_username, body.body)
    return MessageCreateResponse(message=MessageOut.model_validate(message))


# =============================================================================
# Metrics Route
# =============================================================================

@app.get("/metrics")
async def metrics() -> Response:
    """
    Expose Prometheus-style metrics.

    - http_requests_total: Total HTTP requests by method, path, status
    - auth_requests_total: Login/register outcomes by action, result
    - request_latency_seconds: Request latency histogram
    """
    return Response(
        content=get_metrics(),
        media_type=get_metrics_content_type()
    )

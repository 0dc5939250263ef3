from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from . import __version__
from .config import settings
from .database import SessionLocal, get_session, init_db
from .orm_models import IssuePriority, IssueStatus, UserORM
from .schemas import (
    AuthResponse,
    HealthResponse,
    Issue,
    IssueCreate,
    IssuePage,
    IssueUpdate,
    LoginRequest,
    Project,
    ProjectRequest,
    SignupRequest,
)
from .services import auth as auth_service
from .services import issues as issue_service
from .services import projects as project_service
from .services.access import role_of
from .services.errors import AuthenticationError, ServiceError
from .services.notifications import Broadcaster, TopicBroker, broker, get_broadcaster, project_topics

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger("issue_tracker")

app = FastAPI(title="Issue Tracker Backend", version=__version__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@app.on_event("startup")
def startup_event() -> None:  # pragma: no cover - side effect
    init_db()
    logger.info("Issue tracker backend started")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


STATUS_BY_CODE = {
    "validation_failed": status.HTTP_400_BAD_REQUEST,
    "unauthorized": status.HTTP_401_UNAUTHORIZED,
    "forbidden": status.HTTP_403_FORBIDDEN,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
}


@app.exception_handler(ServiceError)
async def handle_service_error(request: Request, error: ServiceError) -> JSONResponse:
    http_status = STATUS_BY_CODE.get(error.code, status.HTTP_400_BAD_REQUEST)
    headers = {"WWW-Authenticate": "Bearer"} if http_status == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(status_code=http_status, content={"detail": error.to_dict()}, headers=headers)


@app.exception_handler(RequestValidationError)
async def handle_request_validation(request: Request, error: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "code": "validation_failed",
                "message": "Request validation failed",
                "details": {"errors": jsonable_encoder(error.errors())},
            }
        },
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, error: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"code": "internal_error", "message": "Internal server error"}},
    )


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_broker() -> TopicBroker:
    return broker


def get_current_user_id(
    token: str = Depends(oauth2_scheme),
    session: Session = Depends(get_session),
) -> str:
    user_id = auth_service.verify_token(token)
    if session.get(UserORM, user_id) is None:
        raise AuthenticationError("User is no longer available")
    return user_id


# Auth ----------------------------------------------------------------------


def _to_auth_response(result: auth_service.AuthResult) -> AuthResponse:
    return AuthResponse(token=result.token, userId=result.user_id, email=result.email, name=result.name)


@app.post("/auth/signup", response_model=AuthResponse, tags=["auth"])
def api_signup(payload: SignupRequest, session: Session = Depends(get_session)) -> AuthResponse:
    result = auth_service.signup(session, email=payload.email, password=payload.password, name=payload.name)
    return _to_auth_response(result)


@app.post("/auth/login", response_model=AuthResponse, tags=["auth"])
def api_login(payload: LoginRequest, session: Session = Depends(get_session)) -> AuthResponse:
    result = auth_service.login(session, email=payload.email, password=payload.password)
    return _to_auth_response(result)


# Projects ------------------------------------------------------------------


@app.post("/projects", response_model=Project, tags=["projects"])
def api_create_project(
    payload: ProjectRequest,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> Project:
    return project_service.create_project(session, payload.name, user_id)


@app.get("/projects", response_model=list[Project], tags=["projects"])
def api_list_projects(
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> list[Project]:
    return project_service.list_projects_for_user(session, user_id)


@app.get("/projects/{project_id}", response_model=Project, tags=["projects"])
def api_get_project(
    project_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> Project:
    return project_service.get_project(session, project_id, user_id)


@app.put("/projects/{project_id}", response_model=Project, tags=["projects"])
def api_update_project(
    project_id: str,
    payload: ProjectRequest,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> Project:
    return project_service.update_project(session, project_id, payload.name, user_id)


@app.delete("/projects/{project_id}", status_code=204, tags=["projects"])
def api_delete_project(
    project_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> Response:
    project_service.delete_project(session, project_id, user_id)
    return Response(status_code=204)


# Issues --------------------------------------------------------------------


@app.post("/issues", response_model=Issue, response_model_exclude_none=True, tags=["issues"])
def api_create_issue(
    payload: IssueCreate,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> Issue:
    return issue_service.create_issue(session, payload, user_id, broadcaster=broadcaster)


@app.get("/issues", response_model=IssuePage, response_model_exclude_none=True, tags=["issues"])
def api_list_issues(
    projectId: str = Query(..., min_length=1),
    status_filter: Optional[IssueStatus] = Query(None, alias="status"),
    priority: Optional[IssuePriority] = Query(None),
    assigneeId: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    page: int = Query(0),
    size: Optional[int] = Query(None),
    sortBy: str = Query(issue_service.DEFAULT_SORT_FIELD),
    sortDir: str = Query(issue_service.DEFAULT_SORT_DIRECTION),
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> IssuePage:
    return issue_service.list_issues(
        session,
        projectId,
        user_id,
        status=status_filter,
        priority=priority,
        assignee_id=assigneeId,
        search=search,
        page=page,
        size=size,
        sort_by=sortBy,
        sort_dir=sortDir,
    )


@app.get("/issues/{issue_id}", response_model=Issue, response_model_exclude_none=True, tags=["issues"])
def api_get_issue(
    issue_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
) -> Issue:
    return issue_service.get_issue(session, issue_id, user_id)


@app.put("/issues/{issue_id}", response_model=Issue, response_model_exclude_none=True, tags=["issues"])
def api_update_issue(
    issue_id: str,
    payload: IssueUpdate,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> Issue:
    return issue_service.update_issue(session, issue_id, payload, user_id, broadcaster=broadcaster)


@app.delete("/issues/{issue_id}", status_code=204, tags=["issues"])
def api_delete_issue(
    issue_id: str,
    session: Session = Depends(get_session),
    user_id: str = Depends(get_current_user_id),
    broadcaster: Broadcaster = Depends(get_broadcaster),
) -> Response:
    issue_service.delete_issue(session, issue_id, user_id, broadcaster=broadcaster)
    return Response(status_code=204)


# Live events ---------------------------------------------------------------


def _resolve_ws_access(factory: sessionmaker, token: str, project_id: str) -> Optional[str]:
    user_id = auth_service.verify_token(token)
    with factory() as session:
        role = role_of(session, project_id, user_id)
    return role.value if role else None


@app.websocket("/ws/projects/{project_id}")
async def ws_project_events(
    websocket: WebSocket,
    project_id: str,
    token: str = Query(""),
    factory: sessionmaker = Depends(get_session_factory),
    topic_broker: TopicBroker = Depends(get_broker),
) -> None:
    try:
        role = await run_in_threadpool(_resolve_ws_access, factory, token, project_id)
    except AuthenticationError:
        await websocket.close(code=4401)
        return
    if role is None:
        await websocket.close(code=4403)
        return

    subscription = topic_broker.subscribe(project_topics(project_id))
    await websocket.accept()

    async def forward() -> None:
        while True:
            message = await subscription.queue.get()
            await websocket.send_json(message)

    forwarder = asyncio.create_task(forward())
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        topic_broker.unsubscribe(subscription)
        forwarder.cancel()
        try:
            await forwarder
        except (asyncio.CancelledError, WebSocketDisconnect):
            pass
        except RuntimeError:
            # send_json on a socket the client already closed
            logger.warning("Stopped relaying events for project %s", project_id, exc_info=True)


@app.get("/health", response_model=HealthResponse, tags=["system"])
def api_health() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)

from fastapi import FastAPI, APIRouter, Query, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import logging
import time
from typing import List, Optional
from datetime import datetime

from config import ENV, ExtractionConfig, get_cors_origins, validate_required_env_vars
from errors import TaskFlowError, AuthenticationError, InvalidInputError, NotFoundError
from auth import hash_password, verify_password, create_jwt_token, get_current_user
from storage import PostgresStorage, get_storage, close_db_pool
from task_extraction import TaskExtractionClient
from extraction_service import ExtractionOrchestrator
from email_service import send_task_email
from models import (
    PRIORITIZATION_METHODS,
    Activity,
    AuthResponse,
    Communication,
    CommunicationExtractRequest,
    CommunicationWithTasks,
    ExtractionResult,
    PomodoroSession,
    PomodoroSessionCreate,
    PrioritizationUpdate,
    Project,
    ProjectCreate,
    ProjectUpdate,
    Task,
    TaskCreate,
    TaskEmailRequest,
    TaskStats,
    TaskUpdate,
    TimerSession,
    TimerSessionCreate,
    TimerSessionUpdate,
    User,
    UserLogin,
    UserReward,
    UserSignup,
    utc_now,
    with_completion_timestamp,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Create the main app with docs enabled in development, disabled in production
if ENV == 'production':
    app = FastAPI(docs_url=None, redoc_url=None, openapi_url=None)
else:
    app = FastAPI(docs_url="/api/docs", redoc_url="/api/redoc", openapi_url="/api/openapi.json")

# CORS middleware applies to ALL routes including /api/*
cors_origins = get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=cors_origins != ['*'],
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["authorization", "content-type", "accept", "origin", "x-requested-with"],
    max_age=600,  # Cache preflight for 10 minutes
)

# Request logging middleware (dev only) - MUST be after CORS middleware
if ENV != 'production':
    @app.middleware("http")
    async def log_requests(request, call_next):
        """Log all requests in development mode"""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(
            f"{request.method} {request.url.path} → {response.status_code} "
            f"({process_time:.3f}s)"
        )
        return response

# Create a router with the /api prefix
api_router = APIRouter(prefix="/api")

# Fields a task update may set back to null; the rest are NOT NULL columns
NULLABLE_TASK_FIELDS = {
    "description", "assignee", "due_date", "eisenhower_quadrant", "abcde_priority", "chunk_size", "estimated_time",
}

POMODORO_REWARD_TITLE = "Pomodoro Completed!"
POMODORO_REWARD_DESCRIPTION = "You completed a 25-minute focus session"


# ============ ERROR HANDLERS ============
@app.exception_handler(TaskFlowError)
async def taskflow_error_handler(request: Request, exc: TaskFlowError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}",
                     exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=400,
        content={"detail": "Invalid request data", "errors": jsonable_encoder(exc.errors())}
    )


# ============ DEPENDENCIES ============
def get_extraction_client() -> TaskExtractionClient:
    return TaskExtractionClient(ExtractionConfig.from_env())


def get_orchestrator(
    extractor: TaskExtractionClient = Depends(get_extraction_client),
    storage: PostgresStorage = Depends(get_storage),
) -> ExtractionOrchestrator:
    return ExtractionOrchestrator(extractor, storage)


def compute_task_stats(tasks: List[Task], now: Optional[datetime] = None) -> TaskStats:
    now = now or utc_now()
    total = len(tasks)
    completed = sum(1 for t in tasks if t.status == "completed")
    return TaskStats(
        total=total,
        completed=completed,
        in_progress=sum(1 for t in tasks if t.status == "in_progress"),
        pending=sum(1 for t in tasks if t.status == "pending"),
        overdue=sum(1 for t in tasks if t.due_date and t.due_date < now and t.status != "completed"),
        completion_rate=round(completed / total * 100) if total else 0,
    )


async def ensure_owned_links(storage: PostgresStorage, user_id: str, project_id: Optional[str] = None,
                             task_id: Optional[str] = None):
    """Raise NotFoundError unless the linked project and task belong to user_id."""
    if project_id:
        await storage.get_project(project_id, user_id)
    if task_id:
        await storage.get_task(task_id, user_id)


# Routes
@api_router.get("/")
async def root():
    return {"message": "TaskFlow API"}


@api_router.get("/health")
async def health():
    return {"status": "healthy"}


# ============ AUTH ROUTES ============
@api_router.post("/auth/signup", response_model=AuthResponse)
async def signup(user_data: UserSignup, storage: PostgresStorage = Depends(get_storage)):
    """Register a new user with email and password"""
    email = user_data.email.lower()
    if await storage.get_user_credentials(email):
        raise InvalidInputError("Email already registered")

    user = await storage.create_user(User(email=email, name=user_data.name), hash_password(user_data.password))
    logger.info(f"New user registered: {user.id}")
    return AuthResponse(token=create_jwt_token(user.id, user.email), user=user)


@api_router.post("/auth/login", response_model=AuthResponse)
async def login(credentials: UserLogin, storage: PostgresStorage = Depends(get_storage)):
    """Login with email and password"""
    found = await storage.get_user_credentials(credentials.email.lower())
    if not found or not verify_password(credentials.password, found[1]):
        raise AuthenticationError("Invalid email or password")

    user = found[0]
    return AuthResponse(token=create_jwt_token(user.id, user.email), user=user)


@api_router.get("/auth/me", response_model=User)
async def get_me(user: User = Depends(get_current_user)):
    """Get current authenticated user"""
    return user


@api_router.put("/auth/user/prioritization", response_model=User)
async def update_prioritization_method(
    body: PrioritizationUpdate,
    user: User = Depends(get_current_user),
    storage: PostgresStorage = Depends(get_storage),
):
    if body.method not in PRIORITIZATION_METHODS:
        raise InvalidInputError("Invalid prioritization method")
    return await storage.update_user_prioritization_method(user.id, body.method)


# ============ COMMUNICATION ROUTES ============
@api_router.post("/communications/extract", response_model=ExtractionResult)
async def extract_communication(
    body: CommunicationExtractRequest,
    user: User = Depends(get_current_user),
    orchestrator: ExtractionOrchestrator = Depends(get_orchestrator),
):
    """Extract tasks from a communication and store both."""
    return await orchestrator.process_and_extract(user.id, body.title, body.content, body.type)


@api_router.get("/communications", response_model=List[Communication])
async def list_communications(user: User = Depends(get_current_user),
                              storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_communications(user.id)


@api_router.get("/communications/{communication_id}", response_model=CommunicationWithTasks)
async def get_communication(communication_id: str, user: User = Depends(get_current_user),
                            storage: PostgresStorage = Depends(get_storage)):
    communication = await storage.get_communication(communication_id, user.id)
    tasks = await storage.list_tasks(user.id, communication_id=communication.id)
    return CommunicationWithTasks(**communication.model_dump(), tasks=tasks)


# ============ TASK ROUTES ============
@api_router.get("/tasks", response_model=List[Task])
async def list_tasks(status: Optional[str] = None, user: User = Depends(get_current_user),
                     storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_tasks(user.id, status=status)


@api_router.post("/tasks", response_model=Task)
async def create_task(task_data: TaskCreate, user: User = Depends(get_current_user),
                      storage: PostgresStorage = Depends(get_storage)):
    values = with_completion_timestamp(task_data.model_dump())
    async with storage.transaction() as tx:
        task = await tx.create_task(Task(user_id=user.id, **values))
        await tx.create_activity(Activity(
            user_id=user.id,
            task_id=task.id,
            action="created",
            description=f'Task "{task.title}" created manually',
        ))
    return task


# Must be registered before /tasks/{task_id}
@api_router.get("/tasks/stats", response_model=TaskStats)
async def get_task_stats(user: User = Depends(get_current_user),
                         storage: PostgresStorage = Depends(get_storage)):
    return compute_task_stats(await storage.list_tasks(user.id))


@api_router.post("/tasks/email")
async def email_tasks(body: TaskEmailRequest, user: User = Depends(get_current_user),
                      storage: PostgresStorage = Depends(get_storage)):
    """Email the caller's own tasks among task_ids."""
    if not body.task_ids:
        raise InvalidInputError("Task IDs are required")

    owned = {t.id: t for t in await storage.list_tasks(user.id)}
    tasks = [owned[task_id] for task_id in dict.fromkeys(body.task_ids) if task_id in owned]
    if not tasks:
        raise NotFoundError("No valid tasks found")

    recipient = body.email or user.email
    await send_task_email(recipient, tasks, body.subject)
    return {"message": "Email sent successfully", "sent": len(tasks)}


@api_router.get("/tasks/{task_id}", response_model=Task)
async def get_task(task_id: str, user: User = Depends(get_current_user),
                   storage: PostgresStorage = Depends(get_storage)):
    return await storage.get_task(task_id, user.id)


@api_router.api_route("/tasks/{task_id}", methods=["PUT", "PATCH"], response_model=Task)
async def update_task(task_id: str, task_update: TaskUpdate, user: User = Depends(get_current_user),
                      storage: PostgresStorage = Depends(get_storage)):
    update_data = {
        k: v for k, v in task_update.model_dump(exclude_unset=True).items()
        if v is not None or k in NULLABLE_TASK_FIELDS
    }
    if not update_data:
        raise InvalidInputError("No fields to update")

    update_data = with_completion_timestamp(update_data)
    completing = update_data.get("status") == "completed"

    async with storage.transaction() as tx:
        task = await tx.update_task(task_id, user.id, update_data)
        await tx.create_activity(Activity(
            user_id=user.id,
            task_id=task.id,
            action="completed" if completing else "updated",
            description=f'Task "{task.title}" {"completed" if completing else "updated"}',
        ))
    return task


@api_router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, user: User = Depends(get_current_user),
                      storage: PostgresStorage = Depends(get_storage)):
    async with storage.transaction() as tx:
        task = await tx.delete_task(task_id, user.id)
        await tx.create_activity(Activity(
            user_id=user.id,
            task_id=None,
            action="deleted",
            description=f'Task "{task.title}" deleted',
        ))
    return {"message": "Task deleted"}


# ============ ACTIVITY ROUTES ============
@api_router.get("/activities", response_model=List[Activity])
async def list_activities(limit: int = Query(10, ge=1, le=100), user: User = Depends(get_current_user),
                          storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_activities(user.id, limit)


# ============ PROJECT ROUTES ============
@api_router.get("/projects", response_model=List[Project])
async def list_projects(user: User = Depends(get_current_user), storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_projects(user.id)


@api_router.post("/projects", response_model=Project)
async def create_project(project_data: ProjectCreate, user: User = Depends(get_current_user),
                         storage: PostgresStorage = Depends(get_storage)):
    async with storage.transaction() as tx:
        project = await tx.create_project(Project(user_id=user.id, **project_data.model_dump()))
        await tx.create_activity(Activity(
            user_id=user.id,
            action="created",
            description=f"Created project: {project.name}",
        ))
    return project


@api_router.put("/projects/{project_id}", response_model=Project)
async def update_project(project_id: str, project_update: ProjectUpdate, user: User = Depends(get_current_user),
                         storage: PostgresStorage = Depends(get_storage)):
    update_data = {k: v for k, v in project_update.model_dump(exclude_unset=True).items()
                   if v is not None or k == "description"}
    if not update_data:
        raise InvalidInputError("No fields to update")
    return await storage.update_project(project_id, user.id, update_data)


@api_router.delete("/projects/{project_id}")
async def delete_project(project_id: str, user: User = Depends(get_current_user),
                         storage: PostgresStorage = Depends(get_storage)):
    await storage.delete_project(project_id, user.id)
    return {"message": "Project deleted"}


# ============ TIMER SESSION ROUTES ============
@api_router.get("/timer-sessions", response_model=List[TimerSession])
async def list_timer_sessions(user: User = Depends(get_current_user),
                              storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_timer_sessions(user.id)


@api_router.post("/timer-sessions", response_model=TimerSession)
async def create_timer_session(session_data: TimerSessionCreate, user: User = Depends(get_current_user),
                               storage: PostgresStorage = Depends(get_storage)):
    await ensure_owned_links(storage, user.id, session_data.project_id, session_data.task_id)
    return await storage.create_timer_session(TimerSession(user_id=user.id, **session_data.model_dump()))


@api_router.put("/timer-sessions/{session_id}", response_model=TimerSession)
async def update_timer_session(session_id: str, session_update: TimerSessionUpdate,
                               user: User = Depends(get_current_user),
                               storage: PostgresStorage = Depends(get_storage)):
    update_data = session_update.model_dump(exclude_unset=True)
    if not update_data:
        raise InvalidInputError("No fields to update")
    await ensure_owned_links(storage, user.id, update_data.get("project_id"), update_data.get("task_id"))

    completing = update_data.get("is_completed") is True
    if completing:
        update_data["ended_at"] = utc_now()

    async with storage.transaction() as tx:
        session = await tx.update_timer_session(session_id, user.id, update_data)
        if completing:
            await tx.create_activity(Activity(
                user_id=user.id,
                task_id=session.task_id,
                action="completed",
                description=f"Completed {session.timer_type} timer session ({session.duration // 60} minutes)",
            ))
    return session


# ============ POMODORO ROUTES ============
@api_router.get("/pomodoro-sessions", response_model=List[PomodoroSession])
async def list_pomodoro_sessions(user: User = Depends(get_current_user),
                                 storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_pomodoro_sessions(user.id)


@api_router.post("/pomodoro-sessions", response_model=PomodoroSession)
async def create_pomodoro_session(session_data: PomodoroSessionCreate, user: User = Depends(get_current_user),
                                  storage: PostgresStorage = Depends(get_storage)):
    await ensure_owned_links(storage, user.id, session_data.project_id, session_data.task_id)
    return await storage.create_pomodoro_session(PomodoroSession(user_id=user.id, **session_data.model_dump()))


@api_router.put("/pomodoro-sessions/{session_id}/complete", response_model=PomodoroSession)
async def complete_pomodoro_session(session_id: str, user: User = Depends(get_current_user),
                                    storage: PostgresStorage = Depends(get_storage)):
    """Mark a pomodoro session done; work sessions earn a star."""
    async with storage.transaction() as tx:
        session = await tx.complete_pomodoro_session(session_id, user.id)
        if session.session_type == "work":
            await tx.create_reward(UserReward(
                user_id=user.id,
                reward_type="star",
                title=POMODORO_REWARD_TITLE,
                description=POMODORO_REWARD_DESCRIPTION,
            ))
        await tx.create_activity(Activity(
            user_id=user.id,
            task_id=session.task_id,
            action="completed",
            description=f"Completed {session.session_type} pomodoro session",
        ))
    return session


@api_router.get("/rewards", response_model=List[UserReward])
async def list_rewards(user: User = Depends(get_current_user), storage: PostgresStorage = Depends(get_storage)):
    return await storage.list_rewards(user.id)


# Include the router in the main app
app.include_router(api_router)


@app.on_event("startup")
async def validate_environment():
    validate_required_env_vars()


@app.on_event("shutdown")
async def shutdown_db_client():
    await close_db_pool()

"""
Pydantic models for users, communications, tasks, activities and time tracking.

Raw AI output is modelled separately (RawExtraction / RawExtractedTask) and only
SanitizedTask is allowed to flow into persistence.
"""
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

Priority = Literal["low", "medium", "high"]
TaskStatus = Literal["pending", "in_progress", "completed"]
InputKind = Literal["text", "file", "voice"]
EisenhowerQuadrant = Literal[
    "urgent-important",
    "urgent-not-important",
    "not-urgent-important",
    "not-urgent-not-important",
]
AbcdePriority = Literal["A", "B", "C", "D", "E"]
ChunkSize = Literal["small", "medium", "large"]
PrioritizationMethod = Literal["eisenhower", "eat-the-frog", "abcde", "chunking"]
TimerType = Literal["standard", "pomodoro"]
PomodoroSessionType = Literal["work", "short_break", "long_break"]

PRIORITIES = ("low", "medium", "high")
INPUT_KINDS = ("text", "file", "voice")
PRIORITIZATION_METHODS = ("eisenhower", "eat-the-frog", "abcde", "chunking")

DEFAULT_PRIORITY = "medium"
UNTITLED_TASK = "Untitled task"
NO_SUMMARY = "No summary available"


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ============ USERS ============
class User(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    email: str
    name: str = ""
    prioritization_method: PrioritizationMethod = "eisenhower"
    created_at: datetime = Field(default_factory=utc_now)


class UserSignup(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=1)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class AuthResponse(BaseModel):
    token: str
    user: User


class PrioritizationUpdate(BaseModel):
    method: str


# ============ COMMUNICATIONS ============
class Communication(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    user_id: str
    title: str
    content: str
    summary: Optional[str] = None
    type: InputKind = "text"
    created_at: datetime = Field(default_factory=utc_now)


class CommunicationExtractRequest(BaseModel):
    # Blank values are rejected by the orchestrator (400), not by the schema (422)
    title: str = ""
    content: str = ""
    type: str = "text"


# ============ TASKS ============
class Task(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str = Field(default_factory=new_id)
    user_id: str
    communication_id: Optional[str] = None  # None for manually created tasks
    title: str
    description: Optional[str] = ""
    priority: Priority = DEFAULT_PRIORITY
    status: TaskStatus = "pending"
    assignee: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None  # set iff status == completed
    # Prioritization method specific fields
    eisenhower_quadrant: Optional[EisenhowerQuadrant] = None
    abcde_priority: Optional[AbcdePriority] = None
    is_eat_the_frog: bool = False
    chunk_size: Optional[ChunkSize] = None
    estimated_time: Optional[int] = None  # minutes
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class TaskCreate(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = ""
    priority: Priority = DEFAULT_PRIORITY
    status: TaskStatus = "pending"
    assignee: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    due_date: Optional[datetime] = None
    eisenhower_quadrant: Optional[EisenhowerQuadrant] = None
    abcde_priority: Optional[AbcdePriority] = None
    is_eat_the_frog: bool = False
    chunk_size: Optional[ChunkSize] = None
    estimated_time: Optional[int] = Field(default=None, ge=1)


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    priority: Optional[Priority] = None
    status: Optional[TaskStatus] = None
    assignee: Optional[str] = None
    tags: Optional[List[str]] = None
    due_date: Optional[datetime] = None
    eisenhower_quadrant: Optional[EisenhowerQuadrant] = None
    abcde_priority: Optional[AbcdePriority] = None
    is_eat_the_frog: Optional[bool] = None
    chunk_size: Optional[ChunkSize] = None
    estimated_time: Optional[int] = Field(default=None, ge=1)


def with_completion_timestamp(update_data: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Keep completed_at consistent with a status change.

    completed -> completed_at = now; any other status -> completed_at cleared.
    Updates that don't touch status are returned unchanged.
    """
    if "status" not in update_data:
        return dict(update_data)
    result = dict(update_data)
    if update_data["status"] == "completed":
        result["completed_at"] = now or utc_now()
    else:
        result["completed_at"] = None
    return result


class CommunicationWithTasks(Communication):
    tasks: List[Task] = Field(default_factory=list)


class TaskStats(BaseModel):
    total: int
    completed: int
    in_progress: int
    pending: int
    overdue: int
    completion_rate: int


class TaskEmailRequest(BaseModel):
    task_ids: List[str] = Field(default_factory=list)
    email: Optional[EmailStr] = None
    subject: str = "Your Extracted Tasks"


# ============ ACTIVITIES ============
class Activity(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    user_id: str
    task_id: Optional[str] = None
    action: str  # created, updated, completed, deleted
    description: str
    created_at: datetime = Field(default_factory=utc_now)


# ============ AI EXTRACTION ============
class RawExtractedTask(BaseModel):
    """A task exactly as the AI returned it. Nothing about its fields is trusted."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)
    title: Any = None
    description: Any = None
    priority: Any = None
    assignee: Any = None
    due_date: Any = Field(default=None, alias="dueDate")
    tags: Any = None


class RawExtraction(BaseModel):
    """Parsed AI response, structurally as received."""
    model_config = ConfigDict(extra="allow")
    summary: Any = None
    tasks: Any = None


class SanitizedTask(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    title: str
    description: str = ""
    priority: Priority = DEFAULT_PRIORITY
    assignee: Optional[str] = None
    due_date: Optional[str] = Field(default=None, alias="dueDate")
    tags: List[str] = Field(default_factory=list)


class ExtractionResult(BaseModel):
    communication: Communication
    tasks: List[Task]


# ============ TIME TRACKING ============
class Project(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    user_id: str
    name: str
    description: Optional[str] = None
    color: str = "#3b82f6"  # Hex color for UI differentiation
    is_active: bool = True
    total_time_spent: int = 0  # seconds
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)


class ProjectCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    color: str = "#3b82f6"
    is_active: bool = True


class ProjectUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    color: Optional[str] = None
    is_active: Optional[bool] = None


class TimerSession(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    user_id: str
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    timer_type: TimerType
    duration: int  # seconds
    is_completed: bool = False
    started_at: datetime = Field(default_factory=utc_now)
    ended_at: Optional[datetime] = None
    notes: Optional[str] = None


class TimerSessionCreate(BaseModel):
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    timer_type: TimerType = "standard"
    duration: int = Field(ge=0)
    notes: Optional[str] = None


class TimerSessionUpdate(BaseModel):
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=0)
    is_completed: Optional[bool] = None
    notes: Optional[str] = None


class PomodoroSession(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    user_id: str
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    session_type: PomodoroSessionType
    duration: int  # seconds (1500 work, 300 short break, 900 long break)
    is_completed: bool = False
    completed_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utc_now)


class PomodoroSessionCreate(BaseModel):
    project_id: Optional[str] = None
    task_id: Optional[str] = None
    session_type: PomodoroSessionType = "work"
    duration: int = Field(default=1500, ge=0)


class UserReward(BaseModel):
    model_config = ConfigDict(extra="ignore")
    id: str = Field(default_factory=new_id)
    user_id: str
    reward_type: str  # star, badge, achievement
    title: str
    description: Optional[str] = None
    earned_at: datetime = Field(default_factory=utc_now)

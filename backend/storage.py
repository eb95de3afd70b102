"""
PostgreSQL persistence gateway (asyncpg).

Every read is keyed by user id. Updates and deletes check ownership in the same
statement and raise NotFoundError for missing and foreign rows alike.
Driver failures surface as PersistenceError.
"""
import ssl
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Tuple

import asyncpg

from config import database_ssl_enabled, get_database_url
from errors import InvalidInputError, NotFoundError, PersistenceError
from models import (
    Activity,
    Communication,
    PomodoroSession,
    Project,
    Task,
    TimerSession,
    User,
    UserReward,
    utc_now,
)

logger = logging.getLogger(__name__)

MAX_ACTIVITY_LIMIT = 100

USER_COLUMNS = ("id", "email", "name", "prioritization_method", "created_at")
COMMUNICATION_COLUMNS = ("id", "user_id", "title", "content", "summary", "type", "created_at")
TASK_COLUMNS = (
    "id", "user_id", "communication_id", "title", "description", "priority", "status",
    "assignee", "tags", "due_date", "completed_at", "eisenhower_quadrant", "abcde_priority",
    "is_eat_the_frog", "chunk_size", "estimated_time", "created_at", "updated_at",
)
ACTIVITY_COLUMNS = ("id", "user_id", "task_id", "action", "description", "created_at")
PROJECT_COLUMNS = (
    "id", "user_id", "name", "description", "color", "is_active", "total_time_spent",
    "created_at", "updated_at",
)
TIMER_SESSION_COLUMNS = (
    "id", "user_id", "project_id", "task_id", "timer_type", "duration", "is_completed",
    "started_at", "ended_at", "notes",
)
POMODORO_SESSION_COLUMNS = (
    "id", "user_id", "project_id", "task_id", "session_type", "duration", "is_completed",
    "completed_at", "created_at",
)
REWARD_COLUMNS = ("id", "user_id", "reward_type", "title", "description", "earned_at")

# Columns a caller may change through update_*; anything else is ignored
TASK_UPDATABLE = set(TASK_COLUMNS) - {"id", "user_id", "communication_id", "created_at", "updated_at"}
PROJECT_UPDATABLE = {"name", "description", "color", "is_active", "total_time_spent"}
TIMER_SESSION_UPDATABLE = {"project_id", "task_id", "duration", "is_completed", "ended_at", "notes"}

db_pool: Optional[asyncpg.Pool] = None


async def get_db_pool() -> asyncpg.Pool:
    global db_pool
    if db_pool is None:
        ssl_ctx = None
        if database_ssl_enabled():
            ssl_ctx = ssl.create_default_context()
            ssl_ctx.check_hostname = False
            ssl_ctx.verify_mode = ssl.CERT_NONE
        db_pool = await asyncpg.create_pool(
            get_database_url(),
            ssl=ssl_ctx,
            min_size=1,
            max_size=10,
            statement_cache_size=0  # Required for pgbouncer / Supabase transaction pooler
        )
        logger.info("Database pool initialized")
    return db_pool


async def close_db_pool():
    global db_pool
    if db_pool is not None:
        await db_pool.close()
        db_pool = None
        logger.info("Database pool closed")


def coerce_due_date(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 due date for storage. Naive values are taken as UTC.

    Raises:
        PersistenceError: value is present but not a parseable date
    """
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except (ValueError, AttributeError) as e:
        raise PersistenceError(f"Invalid due date: {value!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _placeholders(count: int, start: int = 1) -> str:
    return ", ".join(f"${i}" for i in range(start, start + count))


class PostgresStorage:
    """
    Gateway over a pool, or bound to one connection inside transaction().
    """

    def __init__(self, pool: Optional[asyncpg.Pool] = None, conn: Optional[asyncpg.Connection] = None):
        if pool is None and conn is None:
            raise ValueError("PostgresStorage needs a pool or a connection")
        self._pool = pool
        self._conn = conn

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        try:
            if self._conn is not None:
                yield self._conn
            else:
                async with self._pool.acquire() as conn:
                    yield conn
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            logger.error(f"Database error while trying to {action}: {type(e).__name__}: {e}")
            raise PersistenceError(f"Failed to {action}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator["PostgresStorage"]:
        """
        Yield a storage bound to one connection inside a transaction.
        Any exception rolls back every write made through it.
        """
        async with self._connection("run transaction") as conn:
            async with conn.transaction():
                yield PostgresStorage(conn=conn)

    async def _insert(self, table: str, columns: Tuple[str, ...], values: Dict[str, Any], action: str):
        query = (
            f"INSERT INTO {table} ({', '.join(columns)}) "
            f"VALUES ({_placeholders(len(columns))}) RETURNING {', '.join(columns)}"
        )
        async with self._connection(action) as conn:
            return await conn.fetchrow(query, *(values[c] for c in columns))

    async def _update_owned(
        self,
        table: str,
        columns: Tuple[str, ...],
        record_id: str,
        user_id: str,
        fields: Dict[str, Any],
        allowed: Iterable[str],
        action: str,
    ):
        filtered = {k: v for k, v in fields.items() if k in set(allowed)}
        if "updated_at" in columns:
            filtered["updated_at"] = utc_now()
        if not filtered:
            return await self._fetch_owned(table, columns, record_id, user_id, action)

        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(filtered, start=3))
        query = (
            f"UPDATE {table} SET {assignments} WHERE id = $1 AND user_id = $2 "
            f"RETURNING {', '.join(columns)}"
        )
        async with self._connection(action) as conn:
            row = await conn.fetchrow(query, record_id, user_id, *filtered.values())
        if row is None:
            raise NotFoundError(f"{table[:-1].replace('_', ' ').capitalize()} not found")
        return row

    async def _fetch_owned(self, table: str, columns: Tuple[str, ...], record_id: str, user_id: str, action: str):
        async with self._connection(action) as conn:
            row = await conn.fetchrow(
                f"SELECT {', '.join(columns)} FROM {table} WHERE id = $1 AND user_id = $2",
                record_id, user_id
            )
        if row is None:
            raise NotFoundError(f"{table[:-1].replace('_', ' ').capitalize()} not found")
        return row

    async def _delete_owned(self, table: str, columns: Tuple[str, ...], record_id: str, user_id: str, action: str):
        async with self._connection(action) as conn:
            row = await conn.fetchrow(
                f"DELETE FROM {table} WHERE id = $1 AND user_id = $2 RETURNING {', '.join(columns)}",
                record_id, user_id
            )
        if row is None:
            raise NotFoundError(f"{table[:-1].replace('_', ' ').capitalize()} not found")
        return row

    async def _list_owned(self, table: str, columns: Tuple[str, ...], user_id: str, order_by: str, action: str,
                          extra_where: str = "", extra_args: Tuple = (), limit: Optional[int] = None,
                          descending: bool = True):
        direction = "DESC" if descending else "ASC"
        query = f"SELECT {', '.join(columns)} FROM {table} WHERE user_id = $1{extra_where} ORDER BY {order_by} {direction}"
        args = [user_id, *extra_args]
        if limit is not None:
            args.append(limit)
            query += f" LIMIT ${len(args)}"
        async with self._connection(action) as conn:
            return await conn.fetch(query, *args)

    # ============ USERS ============
    async def create_user(self, user: User, hashed_password: str) -> User:
        values = user.model_dump()
        values["hashed_password"] = hashed_password
        row = await self._insert("users", USER_COLUMNS + ("hashed_password",), values, "create user")
        return User.model_validate(dict(row))

    async def get_user(self, user_id: str) -> Optional[User]:
        async with self._connection("get user") as conn:
            row = await conn.fetchrow(f"SELECT {', '.join(USER_COLUMNS)} FROM users WHERE id = $1", user_id)
        return User.model_validate(dict(row)) if row else None

    async def get_user_credentials(self, email: str) -> Optional[Tuple[User, str]]:
        """Return the user and password hash for an email (case-insensitive)."""
        async with self._connection("get user credentials") as conn:
            row = await conn.fetchrow(
                f"SELECT {', '.join(USER_COLUMNS)}, hashed_password FROM users WHERE email = $1",
                email.lower()
            )
        if not row:
            return None
        data = dict(row)
        hashed_password = data.pop("hashed_password")
        return User.model_validate(data), hashed_password

    async def update_user_prioritization_method(self, user_id: str, method: str) -> User:
        async with self._connection("update prioritization method") as conn:
            row = await conn.fetchrow(
                f"UPDATE users SET prioritization_method = $1 WHERE id = $2 RETURNING {', '.join(USER_COLUMNS)}",
                method, user_id
            )
        if row is None:
            raise NotFoundError("User not found")
        return User.model_validate(dict(row))

    # ============ COMMUNICATIONS ============
    async def create_communication(self, communication: Communication) -> Communication:
        row = await self._insert("communications", COMMUNICATION_COLUMNS, communication.model_dump(),
                                 "create communication")
        return Communication.model_validate(dict(row))

    async def get_communication(self, communication_id: str, user_id: str) -> Communication:
        row = await self._fetch_owned("communications", COMMUNICATION_COLUMNS, communication_id, user_id,
                                      "get communication")
        return Communication.model_validate(dict(row))

    async def list_communications(self, user_id: str) -> List[Communication]:
        rows = await self._list_owned("communications", COMMUNICATION_COLUMNS, user_id, "created_at",
                                      "list communications")
        return [Communication.model_validate(dict(row)) for row in rows]

    # ============ TASKS ============
    async def create_task(self, task: Task) -> Task:
        row = await self._insert("tasks", TASK_COLUMNS, task.model_dump(), "create task")
        return Task.model_validate(dict(row))

    async def get_task(self, task_id: str, user_id: str) -> Task:
        row = await self._fetch_owned("tasks", TASK_COLUMNS, task_id, user_id, "get task")
        return Task.model_validate(dict(row))

    async def list_tasks(self, user_id: str, status: Optional[str] = None,
                         communication_id: Optional[str] = None) -> List[Task]:
        extra_where = ""
        extra_args: Tuple = ()
        if status:
            extra_args += (status,)
            extra_where += f" AND status = ${len(extra_args) + 1}"
        if communication_id:
            extra_args += (communication_id,)
            extra_where += f" AND communication_id = ${len(extra_args) + 1}"
        # Tasks of one communication come back in extraction order, otherwise newest first
        rows = await self._list_owned("tasks", TASK_COLUMNS, user_id, "created_at", "list tasks",
                                      extra_where=extra_where, extra_args=extra_args,
                                      descending=communication_id is None)
        return [Task.model_validate(dict(row)) for row in rows]

    async def update_task(self, task_id: str, user_id: str, fields: Dict[str, Any]) -> Task:
        row = await self._update_owned("tasks", TASK_COLUMNS, task_id, user_id, fields, TASK_UPDATABLE,
                                       "update task")
        return Task.model_validate(dict(row))

    async def delete_task(self, task_id: str, user_id: str) -> Task:
        row = await self._delete_owned("tasks", TASK_COLUMNS, task_id, user_id, "delete task")
        return Task.model_validate(dict(row))

    # ============ ACTIVITIES ============
    async def create_activity(self, activity: Activity) -> Activity:
        row = await self._insert("activities", ACTIVITY_COLUMNS, activity.model_dump(), "create activity")
        return Activity.model_validate(dict(row))

    async def list_activities(self, user_id: str, limit: int = 10) -> List[Activity]:
        limit = max(1, min(limit, MAX_ACTIVITY_LIMIT))
        rows = await self._list_owned("activities", ACTIVITY_COLUMNS, user_id, "created_at", "list activities",
                                      limit=limit)
        return [Activity.model_validate(dict(row)) for row in rows]

    # ============ PROJECTS ============
    async def create_project(self, project: Project) -> Project:
        row = await self._insert("projects", PROJECT_COLUMNS, project.model_dump(), "create project")
        return Project.model_validate(dict(row))

    async def get_project(self, project_id: str, user_id: str) -> Project:
        row = await self._fetch_owned("projects", PROJECT_COLUMNS, project_id, user_id, "get project")
        return Project.model_validate(dict(row))

    async def list_projects(self, user_id: str) -> List[Project]:
        rows = await self._list_owned("projects", PROJECT_COLUMNS, user_id, "created_at", "list projects")
        return [Project.model_validate(dict(row)) for row in rows]

    async def update_project(self, project_id: str, user_id: str, fields: Dict[str, Any]) -> Project:
        row = await self._update_owned("projects", PROJECT_COLUMNS, project_id, user_id, fields,
                                       PROJECT_UPDATABLE, "update project")
        return Project.model_validate(dict(row))

    async def delete_project(self, project_id: str, user_id: str) -> Project:
        row = await self._delete_owned("projects", PROJECT_COLUMNS, project_id, user_id, "delete project")
        return Project.model_validate(dict(row))

    # ============ TIMER SESSIONS ============
    async def create_timer_session(self, session: TimerSession) -> TimerSession:
        row = await self._insert("timer_sessions", TIMER_SESSION_COLUMNS, session.model_dump(),
                                 "create timer session")
        return TimerSession.model_validate(dict(row))

    async def list_timer_sessions(self, user_id: str) -> List[TimerSession]:
        rows = await self._list_owned("timer_sessions", TIMER_SESSION_COLUMNS, user_id, "started_at",
                                      "list timer sessions")
        return [TimerSession.model_validate(dict(row)) for row in rows]

    async def update_timer_session(self, session_id: str, user_id: str, fields: Dict[str, Any]) -> TimerSession:
        row = await self._update_owned("timer_sessions", TIMER_SESSION_COLUMNS, session_id, user_id, fields,
                                       TIMER_SESSION_UPDATABLE, "update timer session")
        return TimerSession.model_validate(dict(row))

    # ============ POMODORO SESSIONS ============
    async def create_pomodoro_session(self, session: PomodoroSession) -> PomodoroSession:
        row = await self._insert("pomodoro_sessions", POMODORO_SESSION_COLUMNS, session.model_dump(),
                                 "create pomodoro session")
        return PomodoroSession.model_validate(dict(row))

    async def list_pomodoro_sessions(self, user_id: str) -> List[PomodoroSession]:
        rows = await self._list_owned("pomodoro_sessions", POMODORO_SESSION_COLUMNS, user_id, "created_at",
                                      "list pomodoro sessions")
        return [PomodoroSession.model_validate(dict(row)) for row in rows]

    async def complete_pomodoro_session(self, session_id: str, user_id: str) -> PomodoroSession:
        async with self._connection("complete pomodoro session") as conn:
            row = await conn.fetchrow(
                f"""UPDATE pomodoro_sessions SET is_completed = TRUE, completed_at = $3
                    WHERE id = $1 AND user_id = $2 AND is_completed = FALSE
                    RETURNING {', '.join(POMODORO_SESSION_COLUMNS)}""",
                session_id, user_id, utc_now()
            )
        if row is None:
            # Raises NotFoundError when the session is missing or foreign
            await self._fetch_owned("pomodoro_sessions", POMODORO_SESSION_COLUMNS, session_id, user_id,
                                    "get pomodoro session")
            raise InvalidInputError("Pomodoro session already completed")
        return PomodoroSession.model_validate(dict(row))

    # ============ REWARDS ============
    async def create_reward(self, reward: UserReward) -> UserReward:
        row = await self._insert("user_rewards", REWARD_COLUMNS, reward.model_dump(), "create reward")
        return UserReward.model_validate(dict(row))

    async def list_rewards(self, user_id: str) -> List[UserReward]:
        rows = await self._list_owned("user_rewards", REWARD_COLUMNS, user_id, "earned_at", "list rewards")
        return [UserReward.model_validate(dict(row)) for row in rows]


async def get_storage() -> PostgresStorage:
    """FastAPI dependency: a gateway over the shared pool."""
    return PostgresStorage(pool=await get_db_pool())

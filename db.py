import sqlite3
import aiosqlite
import csv
import os
import datetime
from contextlib import contextmanager, asynccontextmanager
from typing import List, Tuple, Optional, Iterable, Mapping, Any

from config import YamlConfig
from settings_schema import validate_settings

Params = Tuple | Mapping[str, Any]

BODYWEIGHT_FALLBACK_LBS = 100.0
INACTIVITY_REASON = "auto_inactivity"

# Shared SQL fragments. Every analytics read joins sets to their session, the
# exercise catalog and the user's custom exercises in the same way.
_MUSCLE_EXPR = "LOWER(COALESCE(ue.primary_muscle_group, e.primary_muscle_group, 'other'))"
_EQUIPMENT_EXPR = "LOWER(COALESCE(ue.equipment, e.equipment, 'bodyweight'))"
_CATEGORY_EXPR = "LOWER(COALESCE(ue.category, e.category, ''))"
_REPS_EXPR = "COALESCE(ws.actual_reps, ws.target_reps, 0)"
_WEIGHT_EXPR = (
    "COALESCE(ws.actual_weight, ws.target_weight, "
    f"CASE WHEN {_EQUIPMENT_EXPR} = 'bodyweight' THEN :bodyweight ELSE 0 END)"
)
_VOLUME_EXPR = f"({_REPS_EXPR} * {_WEIGHT_EXPR})"
_MINUTES_EXPR = "COALESCE(ws.actual_duration_minutes, ws.target_duration_minutes, 0)"
_DISTANCE_EXPR = "COALESCE(ws.actual_distance, ws.target_distance, 0)"
_INCLINE_EXPR = "COALESCE(ws.actual_incline, ws.target_incline, 0)"
_EXERCISE_JOINS = (
    "LEFT JOIN exercises e ON e.id = ws.exercise_id "
    "LEFT JOIN user_exercises ue ON ue.id = ws.exercise_id "
    "AND ue.user_id = s.user_id AND ue.deleted_at IS NULL"
)
_SET_JOINS = (
    "FROM workout_sets ws "
    "JOIN workout_sessions s ON s.id = ws.session_id "
    f"{_EXERCISE_JOINS}"
)
_COMPLETED = (
    "s.finished_at IS NOT NULL "
    f"AND COALESCE(s.ended_reason, '') <> '{INACTIVITY_REASON}'"
)


def to_timestamp(value: datetime.datetime | datetime.date | str | None) -> str | None:
    """Return ``value`` as a sortable UTC ISO-8601 string."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif not isinstance(value, datetime.datetime):
        value = datetime.datetime(value.year, value.month, value.day)
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.astimezone(datetime.timezone.utc).isoformat(timespec="seconds")


class Database:
    """Provides SQLite connection management and schema initialization."""

    _TABLE_DEFINITIONS = {
        "users": (
            """CREATE TABLE users (
                    id TEXT PRIMARY KEY,
                    preferred_split TEXT,
                    session_duration INTEGER,
                    created_at TEXT NOT NULL
                );""",
            ["id", "preferred_split", "session_duration", "created_at"],
        ),
        "exercises": (
            """CREATE TABLE exercises (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    primary_muscle_group TEXT,
                    equipment TEXT,
                    category TEXT
                );""",
            ["id", "name", "primary_muscle_group", "equipment", "category"],
        ),
        "user_exercises": (
            """CREATE TABLE user_exercises (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    primary_muscle_group TEXT,
                    equipment TEXT,
                    category TEXT,
                    deleted_at TEXT
                );""",
            [
                "id",
                "user_id",
                "name",
                "primary_muscle_group",
                "equipment",
                "category",
                "deleted_at",
            ],
        ),
        "workout_templates": (
            """CREATE TABLE workout_templates (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    split_type TEXT,
                    created_at TEXT NOT NULL
                );""",
            ["id", "user_id", "name", "split_type", "created_at"],
        ),
        "workout_template_exercises": (
            """CREATE TABLE workout_template_exercises (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    template_id INTEGER NOT NULL,
                    exercise_id TEXT NOT NULL,
                    order_index INTEGER NOT NULL DEFAULT 0,
                    default_sets INTEGER NOT NULL DEFAULT 3,
                    default_reps INTEGER NOT NULL DEFAULT 10,
                    default_weight REAL,
                    FOREIGN KEY(template_id) REFERENCES workout_templates(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "template_id",
                "exercise_id",
                "order_index",
                "default_sets",
                "default_reps",
                "default_weight",
            ],
        ),
        "workout_sessions": (
            """CREATE TABLE workout_sessions (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    user_id TEXT NOT NULL,
                    template_id INTEGER,
                    template_name TEXT,
                    started_at TEXT NOT NULL,
                    finished_at TEXT,
                    ended_reason TEXT,
                    FOREIGN KEY(template_id) REFERENCES workout_templates(id) ON DELETE SET NULL
                );""",
            [
                "id",
                "user_id",
                "template_id",
                "template_name",
                "started_at",
                "finished_at",
                "ended_reason",
            ],
        ),
        "workout_sets": (
            """CREATE TABLE workout_sets (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    session_id INTEGER NOT NULL,
                    exercise_id TEXT NOT NULL,
                    exercise_name TEXT,
                    set_index INTEGER NOT NULL DEFAULT 0,
                    target_reps INTEGER,
                    target_weight REAL,
                    actual_reps INTEGER,
                    actual_weight REAL,
                    target_duration_minutes REAL,
                    actual_duration_minutes REAL,
                    target_distance REAL,
                    actual_distance REAL,
                    target_incline REAL,
                    actual_incline REAL,
                    rpe REAL,
                    difficulty TEXT,
                    FOREIGN KEY(session_id) REFERENCES workout_sessions(id) ON DELETE CASCADE
                );""",
            [
                "id",
                "session_id",
                "exercise_id",
                "exercise_name",
                "set_index",
                "target_reps",
                "target_weight",
                "actual_reps",
                "actual_weight",
                "target_duration_minutes",
                "actual_duration_minutes",
                "target_distance",
                "actual_distance",
                "target_incline",
                "actual_incline",
                "rpe",
                "difficulty",
            ],
        ),
        "settings": (
            """CREATE TABLE settings (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );""",
            ["key", "value"],
        ),
    }

    _INDEXES = [
        "CREATE INDEX IF NOT EXISTS idx_sessions_user_finished ON workout_sessions (user_id, finished_at);",
        "CREATE INDEX IF NOT EXISTS idx_sets_session ON workout_sets (session_id);",
        "CREATE INDEX IF NOT EXISTS idx_template_exercises_template ON workout_template_exercises (template_id);",
    ]

    def __init__(self, db_path: str = "workout.db") -> None:
        self._db_path = db_path
        self._ensure_schema()
        self._import_exercise_catalog_data()
        self._init_settings()

    @contextmanager
    def _connection(self):
        connection = sqlite3.connect(self._db_path)
        try:
            yield connection
            connection.commit()
        finally:
            connection.close()

    def _ensure_schema(self) -> None:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute("PRAGMA foreign_keys=off;")
            for table, (sql, columns) in self._TABLE_DEFINITIONS.items():
                self._ensure_table(conn, table, sql, columns)
            for statement in self._INDEXES:
                conn.execute(statement)
            cursor.execute("PRAGMA foreign_keys=on;")

    def _ensure_table(
        self, conn: sqlite3.Connection, table: str, sql: str, columns: List[str]
    ) -> None:
        cur = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?;", (table,)
        )
        if cur.fetchone() is None:
            conn.execute(sql)
            return

        cur = conn.execute(f"PRAGMA table_info({table});")
        existing_cols = [row[1] for row in cur.fetchall()]
        if existing_cols == columns:
            return

        conn.execute(f"DROP TABLE IF EXISTS {table}_old;")
        conn.execute(f"ALTER TABLE {table} RENAME TO {table}_old;")
        conn.execute(sql)

        common = [c for c in existing_cols if c in columns]
        if common:
            cols = ", ".join(common)
            missing = [c for c in columns if c not in existing_cols]
            if missing:
                def default_val(col: str) -> str:
                    if col in ("order_index", "set_index"):
                        return "0"
                    if col == "default_sets":
                        return "3"
                    if col == "default_reps":
                        return "10"
                    if col == "created_at":
                        return "datetime('now')"
                    return "NULL"

                defaults = ", ".join(default_val(c) for c in missing)
                conn.execute(
                    f"INSERT INTO {table} ({cols}, {', '.join(missing)}) SELECT {cols}, {defaults} FROM {table}_old;"
                )
            else:
                conn.execute(
                    f"INSERT INTO {table} ({cols}) SELECT {cols} FROM {table}_old;"
                )
        conn.execute(f"DROP TABLE {table}_old;")

    def _import_exercise_catalog_data(self) -> None:
        csv_path = os.path.join(os.path.dirname(__file__), "exercise_catalog.csv")
        if not os.path.exists(csv_path):
            return
        with open(csv_path, newline="") as csvfile:
            reader = csv.DictReader(csvfile)
            records = [
                (
                    row["id"],
                    row["name"],
                    (row.get("primary_muscle_group") or "other").lower(),
                    (row.get("equipment") or "bodyweight").lower(),
                    (row.get("category") or "strength").lower(),
                )
                for row in reader
            ]
        with self._connection() as conn:
            for ex_id, name, muscle_group, equipment, category in records:
                conn.execute(
                    "INSERT INTO exercises (id, name, primary_muscle_group, equipment, category) "
                    "VALUES (?, ?, ?, ?, ?) "
                    "ON CONFLICT(id) DO UPDATE SET name=excluded.name, "
                    "primary_muscle_group=COALESCE(excluded.primary_muscle_group, exercises.primary_muscle_group), "
                    "equipment=COALESCE(excluded.equipment, exercises.equipment), "
                    "category=COALESCE(excluded.category, exercises.category);",
                    (ex_id, name, muscle_group, equipment, category),
                )

    def _init_settings(self) -> None:
        defaults = {
            "bodyweight_fallback": str(BODYWEIGHT_FALLBACK_LBS),
            "recap_cache_seconds": "120",
            "recap_lookback_weeks": "8",
            "default_split": "full_body",
            "rate_limit": "0",
            "rate_window": "60",
            "log_level": "INFO",
        }
        with self._connection() as conn:
            for key, value in defaults.items():
                conn.execute(
                    "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?);",
                    (key, value),
                )


class BaseRepository(Database):
    """Base repository providing helper methods."""

    def execute(self, query: str, params: Params = ()) -> int:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.lastrowid

    def fetch_all(self, query: str, params: Params = ()) -> List[Tuple]:
        with self._connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()


class AsyncDatabase(Database):
    """Provides asynchronous connection management."""

    @asynccontextmanager
    async def _async_connection(self):
        conn = await aiosqlite.connect(self._db_path)
        try:
            yield conn
            await conn.commit()
        finally:
            await conn.close()


class AsyncBaseRepository(AsyncDatabase):
    """Asynchronous variant of BaseRepository using aiosqlite."""

    async def execute(self, query: str, params: Params = ()) -> int:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.lastrowid

    async def update(self, query: str, params: Params = ()) -> int:
        """Run a write statement and return the number of affected rows."""
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetch_all(self, query: str, params: Params = ()) -> List[Tuple]:
        async with self._async_connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return list(rows)

    async def fetch_dicts(self, query: str, params: Params = ()) -> List[dict]:
        async with self._async_connection() as conn:
            conn.row_factory = aiosqlite.Row
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
            return [dict(r) for r in rows]


class UserRepository(BaseRepository):
    """Repository for user training preferences."""

    def create(
        self,
        user_id: str,
        preferred_split: Optional[str] = None,
        session_duration: Optional[int] = None,
    ) -> str:
        self.execute(
            "INSERT INTO users (id, preferred_split, session_duration, created_at) "
            "VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET preferred_split=excluded.preferred_split, "
            "session_duration=excluded.session_duration;",
            (
                user_id,
                preferred_split,
                session_duration,
                to_timestamp(datetime.datetime.now(datetime.timezone.utc)),
            ),
        )
        return user_id


class ExerciseRepository(BaseRepository):
    """Repository for the shared exercise catalog."""

    def add(
        self,
        exercise_id: str,
        name: str,
        muscle_group: str,
        equipment: str = "bodyweight",
        category: str = "strength",
    ) -> str:
        self.execute(
            "INSERT INTO exercises (id, name, primary_muscle_group, equipment, category) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET name=excluded.name, "
            "primary_muscle_group=excluded.primary_muscle_group, "
            "equipment=excluded.equipment, category=excluded.category;",
            (exercise_id, name, muscle_group.lower(), equipment.lower(), category.lower()),
        )
        return exercise_id


class UserExerciseRepository(BaseRepository):
    """Repository for per-user custom exercises overriding the catalog."""

    def add(
        self,
        user_id: str,
        exercise_id: str,
        name: str,
        muscle_group: str,
        equipment: str = "bodyweight",
        category: str = "strength",
    ) -> str:
        self.execute(
            "INSERT INTO user_exercises (id, user_id, name, primary_muscle_group, equipment, category) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (exercise_id, user_id, name, muscle_group, equipment, category),
        )
        return exercise_id

    def delete(self, exercise_id: str) -> None:
        self.execute(
            "UPDATE user_exercises SET deleted_at = ? WHERE id = ?;",
            (to_timestamp(datetime.datetime.now(datetime.timezone.utc)), exercise_id),
        )


class TemplateRepository(BaseRepository):
    """Repository for saved workout templates and their exercises."""

    def create(self, user_id: str, name: str, split_type: Optional[str] = None) -> int:
        return self.execute(
            "INSERT INTO workout_templates (user_id, name, split_type, created_at) VALUES (?, ?, ?, ?);",
            (
                user_id,
                name,
                split_type,
                to_timestamp(datetime.datetime.now(datetime.timezone.utc)),
            ),
        )

    def add_exercise(
        self,
        template_id: int,
        exercise_id: str,
        default_sets: int = 3,
        default_reps: int = 10,
        default_weight: Optional[float] = None,
    ) -> int:
        rows = self.fetch_all(
            "SELECT COALESCE(MAX(order_index), -1) FROM workout_template_exercises WHERE template_id = ?;",
            (template_id,),
        )
        position = int(rows[0][0]) + 1
        return self.execute(
            "INSERT INTO workout_template_exercises "
            "(template_id, exercise_id, order_index, default_sets, default_reps, default_weight) "
            "VALUES (?, ?, ?, ?, ?, ?);",
            (template_id, exercise_id, position, default_sets, default_reps, default_weight),
        )

    def fetch_exercises(self, template_id: int) -> List[Tuple[str, int, int, Optional[float]]]:
        return self.fetch_all(
            "SELECT exercise_id, default_sets, default_reps, default_weight "
            "FROM workout_template_exercises WHERE template_id = ? ORDER BY order_index;",
            (template_id,),
        )


class SessionRepository(BaseRepository):
    """Repository for workout sessions."""

    def create(
        self,
        user_id: str,
        started_at: datetime.datetime | str,
        template_id: Optional[int] = None,
        template_name: Optional[str] = None,
    ) -> int:
        return self.execute(
            "INSERT INTO workout_sessions (user_id, template_id, template_name, started_at) "
            "VALUES (?, ?, ?, ?);",
            (user_id, template_id, template_name, to_timestamp(started_at)),
        )

    def finish(
        self,
        session_id: int,
        finished_at: datetime.datetime | str,
        ended_reason: Optional[str] = None,
    ) -> None:
        self.execute(
            "UPDATE workout_sessions SET finished_at = ?, ended_reason = ? WHERE id = ?;",
            (to_timestamp(finished_at), ended_reason, session_id),
        )


class SetRepository(BaseRepository):
    """Repository for performed or planned sets."""

    _FIELDS = (
        "target_reps",
        "target_weight",
        "actual_reps",
        "actual_weight",
        "target_duration_minutes",
        "actual_duration_minutes",
        "target_distance",
        "actual_distance",
        "target_incline",
        "actual_incline",
        "rpe",
        "difficulty",
    )

    def add(
        self,
        session_id: int,
        exercise_id: str,
        exercise_name: Optional[str] = None,
        set_index: Optional[int] = None,
        **values: Any,
    ) -> int:
        unknown = set(values) - set(self._FIELDS)
        if unknown:
            raise ValueError(f"unknown set fields: {', '.join(sorted(unknown))}")
        if values.get("difficulty") not in (None, "too_easy", "just_right", "too_hard"):
            raise ValueError("invalid difficulty")
        if set_index is None:
            rows = self.fetch_all(
                "SELECT COUNT(*) FROM workout_sets WHERE session_id = ?;", (session_id,)
            )
            set_index = int(rows[0][0])
        columns = ["session_id", "exercise_id", "exercise_name", "set_index"]
        params: list[Any] = [session_id, exercise_id, exercise_name, set_index]
        for field in self._FIELDS:
            if field in values:
                columns.append(field)
                params.append(values[field])
        placeholders = ", ".join("?" for _ in columns)
        return self.execute(
            f"INSERT INTO workout_sets ({', '.join(columns)}) VALUES ({placeholders});",
            tuple(params),
        )

    def bulk_add(self, session_id: int, exercise_id: str, sets: Iterable[dict]) -> List[int]:
        return [self.add(session_id, exercise_id, **values) for values in sets]


class SettingsRepository(BaseRepository):
    """Repository for application settings synchronized with YAML."""

    def __init__(
        self, db_path: str = "workout.db", yaml_path: str = "settings.yaml"
    ) -> None:
        super().__init__(db_path)
        self._yaml = YamlConfig(yaml_path)
        self._sync_from_yaml()
        self._sync_to_yaml()

    def _raw_all_settings(self) -> dict:
        rows = self.fetch_all("SELECT key, value FROM settings ORDER BY key;")
        result: dict[str, float | str] = {}
        for k, v in rows:
            try:
                result[k] = float(v)
            except ValueError:
                result[k] = v
        return result

    def _sync_from_yaml(self) -> None:
        data = self._yaml.load()
        if not data:
            return
        validate_settings(data)
        with self._connection() as conn:
            for key, value in data.items():
                conn.execute(
                    "INSERT INTO settings (key, value) VALUES (?, ?) "
                    "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
                    (key, str(value)),
                )

    def _sync_to_yaml(self) -> None:
        self._yaml.save(self._raw_all_settings())

    def get_float(self, key: str, default: float) -> float:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        if not rows:
            return default
        try:
            return float(rows[0][0])
        except ValueError:
            return default

    def get_int(self, key: str, default: int) -> int:
        return int(self.get_float(key, float(default)))

    def get_text(self, key: str, default: str) -> str:
        rows = self.fetch_all("SELECT value FROM settings WHERE key = ?;", (key,))
        return rows[0][0] if rows else default

    def set_text(self, key: str, value: str) -> None:
        validate_settings({**self._raw_all_settings(), key: value})
        self.execute(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value;",
            (key, value),
        )
        self._sync_to_yaml()


class AsyncAnalyticsRepository(AsyncBaseRepository):
    """Read model over completed workout history used by the analytics services."""

    def __init__(
        self, db_path: str = "workout.db", bodyweight_fallback: float = BODYWEIGHT_FALLBACK_LBS
    ) -> None:
        super().__init__(db_path)
        self.bodyweight_fallback = bodyweight_fallback

    async def fetch_volume_by_muscle(
        self,
        user_id: str,
        start: datetime.datetime,
        end: datetime.datetime,
    ) -> dict[str, float]:
        rows = await self.fetch_all(
            f"SELECT {_MUSCLE_EXPR} AS muscle_group, SUM({_VOLUME_EXPR}) AS volume "
            f"{_SET_JOINS} "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            f"AND {_CATEGORY_EXPR} <> 'cardio' "
            "AND s.finished_at >= :start AND s.finished_at < :end "
            "GROUP BY muscle_group;",
            {
                "user_id": user_id,
                "start": to_timestamp(start),
                "end": to_timestamp(end),
                "bodyweight": self.bodyweight_fallback,
            },
        )
        return {(muscle or "other"): float(volume or 0) for muscle, volume in rows}

    async def fetch_last_session_by_muscle(self, user_id: str) -> dict[str, dict]:
        rows = await self.fetch_all(
            f"SELECT {_MUSCLE_EXPR} AS muscle_group, s.finished_at, "
            f"SUM(CASE WHEN {_REPS_EXPR} > 0 THEN 1 ELSE 0 END) AS session_sets, "
            f"SUM({_REPS_EXPR}) AS session_reps, "
            f"SUM({_VOLUME_EXPR}) AS session_volume "
            f"{_SET_JOINS} "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            "GROUP BY s.id, muscle_group "
            "ORDER BY s.finished_at DESC;",
            {"user_id": user_id, "bodyweight": self.bodyweight_fallback},
        )
        result: dict[str, dict] = {}
        for muscle, finished_at, sets, reps, volume in rows:
            key = muscle or "other"
            if key in result:
                continue
            result[key] = {
                "last_trained_at": finished_at,
                "sets": int(sets or 0),
                "reps": int(reps or 0),
                "volume": float(volume or 0),
            }
        return result

    async def fetch_stimulus_rows(
        self, user_id: str, since: datetime.datetime
    ) -> List[dict]:
        return await self.fetch_dicts(
            f"SELECT {_MUSCLE_EXPR} AS muscle_group, s.finished_at AS finished_at, "
            f"SUM(CASE WHEN {_CATEGORY_EXPR} <> 'cardio' AND {_REPS_EXPR} > 0 THEN 1 ELSE 0 END) AS strength_sets, "
            f"SUM(CASE WHEN {_CATEGORY_EXPR} <> 'cardio' THEN {_VOLUME_EXPR} ELSE 0 END) AS strength_volume, "
            f"SUM(CASE WHEN {_CATEGORY_EXPR} = 'cardio' THEN {_MINUTES_EXPR} ELSE 0 END) AS cardio_minutes, "
            f"SUM(CASE WHEN {_CATEGORY_EXPR} = 'cardio' THEN {_DISTANCE_EXPR} ELSE 0 END) AS cardio_distance, "
            f"SUM(CASE WHEN {_CATEGORY_EXPR} = 'cardio' THEN {_INCLINE_EXPR} * {_MINUTES_EXPR} ELSE 0 END) AS cardio_incline_minutes "
            f"{_SET_JOINS} "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            "AND s.finished_at >= :since "
            "GROUP BY s.id, muscle_group;",
            {
                "user_id": user_id,
                "since": to_timestamp(since),
                "bodyweight": self.bodyweight_fallback,
            },
        )

    async def fetch_templates_with_muscles(self, user_id: str) -> List[dict]:
        rows = await self.fetch_all(
            "SELECT t.id, t.name, t.split_type, COUNT(DISTINCT te.id) AS exercise_count, "
            f"GROUP_CONCAT(DISTINCT CASE WHEN te.id IS NOT NULL AND {_CATEGORY_EXPR} <> 'cardio' "
            f"THEN {_MUSCLE_EXPR} END) AS muscle_groups, "
            "(SELECT MAX(ls.finished_at) FROM workout_sessions ls "
            "WHERE ls.template_id = t.id AND ls.user_id = t.user_id "
            "AND ls.finished_at IS NOT NULL "
            f"AND COALESCE(ls.ended_reason, '') <> '{INACTIVITY_REASON}') AS last_used_at "
            "FROM workout_templates t "
            "LEFT JOIN workout_template_exercises te ON te.template_id = t.id "
            "LEFT JOIN exercises e ON e.id = te.exercise_id "
            "LEFT JOIN user_exercises ue ON ue.id = te.exercise_id "
            "AND ue.user_id = t.user_id AND ue.deleted_at IS NULL "
            "WHERE t.user_id = :user_id "
            "GROUP BY t.id "
            "ORDER BY last_used_at DESC, t.name;",
            {"user_id": user_id},
        )
        templates = []
        for tid, name, split_type, count, muscles, last_used_at in rows:
            templates.append(
                {
                    "id": tid,
                    "name": name,
                    "split_type": split_type,
                    "exercise_count": int(count or 0),
                    "muscle_groups": sorted(m for m in (muscles or "").split(",") if m),
                    "last_used_at": last_used_at,
                }
            )
        return templates

    async def fetch_recent_sessions_with_sets(
        self, user_id: str, since: datetime.datetime
    ) -> List[dict]:
        rows = await self.fetch_all(
            "SELECT s.id, s.template_id, COALESCE(s.template_name, t.name) AS template_name, "
            "s.finished_at, "
            f"SUM(CASE WHEN ws.id IS NOT NULL AND {_CATEGORY_EXPR} <> 'cardio' THEN {_VOLUME_EXPR} ELSE 0 END) AS total_volume, "
            "AVG(ws.rpe) AS avg_rpe, COUNT(ws.id) AS set_count, "
            f"GROUP_CONCAT(DISTINCT CASE WHEN ws.id IS NOT NULL THEN {_MUSCLE_EXPR} END) AS muscle_groups "
            "FROM workout_sessions s "
            "LEFT JOIN workout_sets ws ON ws.session_id = s.id "
            f"{_EXERCISE_JOINS} "
            "LEFT JOIN workout_templates t ON t.id = s.template_id "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            "AND s.finished_at >= :since "
            "GROUP BY s.id "
            "ORDER BY s.finished_at DESC;",
            {
                "user_id": user_id,
                "since": to_timestamp(since),
                "bodyweight": self.bodyweight_fallback,
            },
        )
        sessions = []
        for sid, template_id, template_name, finished_at, volume, avg_rpe, count, muscles in rows:
            sessions.append(
                {
                    "id": sid,
                    "template_id": template_id,
                    "template_name": template_name,
                    "finished_at": finished_at,
                    "total_volume": float(volume or 0),
                    "avg_rpe": float(avg_rpe) if avg_rpe is not None else None,
                    "set_count": int(count or 0),
                    "muscle_groups": sorted(m for m in (muscles or "").split(",") if m),
                }
            )
        return sessions

    async def fetch_exercise_session_history(
        self, user_id: str, exercise_id: str, limit: int = 3
    ) -> List[dict]:
        rows = await self.fetch_dicts(
            "SELECT s.id AS session_id, s.finished_at AS finished_at, "
            "MAX(ws.exercise_name) AS exercise_name, COUNT(*) AS sets, "
            "AVG(ws.actual_reps) AS avg_reps, AVG(ws.actual_weight) AS avg_weight, "
            "AVG(ws.target_reps) AS target_reps, AVG(ws.target_weight) AS target_weight, "
            "SUM(CASE WHEN ws.actual_reps >= ws.target_reps "
            "AND COALESCE(ws.actual_weight, 0) >= COALESCE(ws.target_weight, 0) "
            "THEN 1 ELSE 0 END) AS hit_target_count "
            "FROM workout_sets ws "
            "JOIN workout_sessions s ON s.id = ws.session_id "
            f"WHERE s.user_id = :user_id AND ws.exercise_id = :exercise_id AND {_COMPLETED} "
            "GROUP BY s.id "
            "ORDER BY s.finished_at DESC "
            "LIMIT :limit;",
            {"user_id": user_id, "exercise_id": exercise_id, "limit": limit},
        )
        for row in rows:
            sets = int(row["sets"] or 0)
            row["hit_target"] = sets > 0 and int(row["hit_target_count"] or 0) >= sets * 0.75
        return rows

    async def fetch_last_workout_at(self, user_id: str) -> str | None:
        rows = await self.fetch_all(
            "SELECT MAX(s.finished_at) FROM workout_sessions s "
            f"WHERE s.user_id = :user_id AND {_COMPLETED};",
            {"user_id": user_id},
        )
        return rows[0][0] if rows else None

    async def fetch_recent_workouts(self, user_id: str, limit: int = 5) -> List[dict]:
        sessions = await self.fetch_all(
            "SELECT s.id, COALESCE(t.name, s.template_name, 'Unnamed Workout'), "
            "t.split_type, s.finished_at "
            "FROM workout_sessions s "
            "LEFT JOIN workout_templates t ON t.id = s.template_id "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            "ORDER BY s.finished_at DESC LIMIT :limit;",
            {"user_id": user_id, "limit": limit},
        )
        workouts = []
        for sid, template_name, split_type, finished_at in sessions:
            exercises = await self.fetch_all(
                "SELECT exercise_id, MAX(exercise_name), COUNT(*), AVG(actual_reps), AVG(actual_weight) "
                "FROM workout_sets WHERE session_id = ? AND actual_reps IS NOT NULL "
                "GROUP BY exercise_id ORDER BY MIN(set_index);",
                (sid,),
            )
            workouts.append(
                {
                    "session_id": sid,
                    "template_name": template_name,
                    "split_type": split_type,
                    "completed_at": finished_at[:10],
                    "exercises": [
                        {
                            "exercise_id": ex_id,
                            "exercise_name": ex_name or "Unknown",
                            "sets": int(count),
                            "avg_reps": round(float(avg_reps or 0)),
                            "avg_weight": round(float(avg_weight)) if avg_weight else None,
                        }
                        for ex_id, ex_name, count, avg_reps, avg_weight in exercises
                    ],
                }
            )
        return workouts

    async def fetch_template(self, user_id: str, template_id: int) -> dict | None:
        rows = await self.fetch_all(
            "SELECT t.id, t.name, te.exercise_id, te.default_weight "
            "FROM workout_templates t "
            "LEFT JOIN workout_template_exercises te ON te.template_id = t.id "
            "WHERE t.id = ? AND t.user_id = ? "
            "ORDER BY te.order_index;",
            (template_id, user_id),
        )
        if not rows:
            return None
        return {
            "id": rows[0][0],
            "name": rows[0][1],
            "exercises": [
                {"exercise_id": ex_id, "default_weight": weight}
                for _tid, _name, ex_id, weight in rows
                if ex_id is not None
            ],
        }

    async def count_template_sessions(self, user_id: str, template_id: int) -> int:
        rows = await self.fetch_all(
            "SELECT COUNT(DISTINCT s.id) FROM workout_sessions s "
            f"WHERE s.user_id = :user_id AND s.template_id = :template_id AND {_COMPLETED};",
            {"user_id": user_id, "template_id": template_id},
        )
        return int(rows[0][0]) if rows else 0

    async def fetch_recent_session_splits(self, user_id: str, limit: int = 60) -> List[dict]:
        """Return split type, template name and finish time of recent sessions, newest first."""
        return await self.fetch_dicts(
            "SELECT t.split_type AS split_type, "
            "COALESCE(t.name, s.template_name) AS template_name, s.finished_at AS finished_at "
            "FROM workout_sessions s "
            "LEFT JOIN workout_templates t ON t.id = s.template_id "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            "ORDER BY s.finished_at DESC LIMIT :limit;",
            {"user_id": user_id, "limit": limit},
        )

    async def fetch_user_profile(self, user_id: str) -> dict:
        rows = await self.fetch_all(
            "SELECT preferred_split, session_duration FROM users WHERE id = ?;",
            (user_id,),
        )
        if not rows:
            return {}
        split, duration = rows[0]
        return {"preferred_split": split, "session_duration": duration}

    async def fetch_muscle_volume_rows(
        self, user_id: str, since: datetime.datetime
    ) -> List[dict]:
        """Return per-session, per-muscle volume and set counts since ``since``."""
        return await self.fetch_dicts(
            f"SELECT s.id AS session_id, s.finished_at AS finished_at, {_MUSCLE_EXPR} AS muscle_group, "
            f"SUM({_VOLUME_EXPR}) AS volume, COUNT(ws.id) AS set_count "
            f"{_SET_JOINS} "
            f"WHERE s.user_id = :user_id AND {_COMPLETED} "
            f"AND {_CATEGORY_EXPR} <> 'cardio' "
            "AND s.finished_at >= :since "
            "GROUP BY s.id, muscle_group "
            "ORDER BY s.finished_at DESC;",
            {
                "user_id": user_id,
                "since": to_timestamp(since),
                "bodyweight": self.bodyweight_fallback,
            },
        )

    async def update_template_default_weight(
        self, template_id: int, exercise_id: str, weight: float
    ) -> int:
        return await self.update(
            "UPDATE workout_template_exercises SET default_weight = ? "
            "WHERE template_id = ? AND exercise_id = ?;",
            (weight, template_id, exercise_id),
        )

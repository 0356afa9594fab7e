import contextlib
import json
import logging
import sqlite3
import threading
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .cache import GenerationCache
from .config import Config
from .domain import (
    INITIAL_VERSION_NUMBER,
    Artifact,
    ArtifactView,
    AuthError,
    ContentType,
    Variation,
    Version,
    Visibility,
    next_version_number,
)
from .errors import AccessDeniedError, ForbiddenError, NotFoundError, ValidationError
from .utils import hash_password, make_id, split_tags, time_now

logger = logging.getLogger(__name__)

METADATA_FIELDS = ("display_name", "description", "visibility", "tags", "thumbnail")
VARIATION_MARKER = "(variation {index}: focus on unique layout and color scheme)"


def authorize(requester_id: Optional[str], artifact: Artifact) -> bool:
    """Ownership policy: only the owner may mutate an artifact."""
    return requester_id is not None and requester_id == artifact.owner_id


def can_view(requester_id: Optional[str], artifact: Artifact) -> bool:
    """Visibility policy: public artifacts are readable by anyone, private ones by their owner."""
    return artifact.is_public or authorize(requester_id, artifact)


def require_owner(requester_id: Optional[str], artifact: Artifact):
    """
    Raise unless the requester owns the artifact.

    A private artifact gets the same error a non-owner reader would see, so
    mutations do not reveal that it exists either.
    """
    if authorize(requester_id, artifact):
        return
    if not artifact.is_public:
        raise AccessDeniedError()
    raise AccessDeniedError("Unauthorized: You do not own this website")


def coerce_content_type(value: Optional[str], default: str) -> str:
    if value is None or value == "":
        value = default
    try:
        return ContentType(value).value
    except ValueError:
        allowed = ", ".join(t.value for t in ContentType)
        raise ValidationError(f"Unknown website type '{value}'. Expected one of: {allowed}")


def coerce_visibility(value: Any, default: str = Visibility.PRIVATE.value) -> str:
    if value is None:
        return default
    if isinstance(value, bool):
        return Visibility.PUBLIC.value if value else Visibility.PRIVATE.value
    try:
        return Visibility(value).value
    except ValueError:
        raise ValidationError(f"Unknown visibility '{value}'. Expected 'private' or 'public'")


def _row_to_artifact(row: sqlite3.Row) -> Artifact:
    return Artifact(
        id=row["id"],
        owner_id=row["owner_id"],
        display_name=row["display_name"],
        description=row["description"] or "",
        content_type=row["content_type"],
        visibility=row["visibility"],
        latest_version_id=row["latest_version_id"],
        tags=json.loads(row["tags"] or "[]"),
        thumbnail=row["thumbnail"] or "",
        version_count=row["version_count"],
        edit_count=row["edit_count"],
        view_count=row["view_count"],
        fork_count=row["fork_count"],
        is_fork=bool(row["is_fork"]),
        origin_artifact_id=row["origin_artifact_id"],
        origin_owner_id=row["origin_owner_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _row_to_version(row: sqlite3.Row) -> Version:
    return Version(
        id=row["id"],
        artifact_id=row["artifact_id"],
        content=row["content"],
        instruction=row["instruction"],
        edit_instruction=row["edit_instruction"],
        content_type=row["content_type"],
        version_number=row["version_number"],
        is_initial=bool(row["is_initial"]),
        parent_version_id=row["parent_version_id"],
        created_at=row["created_at"],
        derived_from_version_id=row["derived_from_version_id"],
    )


class AuthService:
    """
    Handles user registration, login, and session validation with SQLite persistence.

    Besides sessions, this is the user identity check the artifact store
    relies on: ``exists(user_id)`` decides whether an owner is known.

    Attributes:
        db_path (str): Path to the SQLite database file
        lock (threading.Lock): Thread lock for safe concurrent access
        users (Dict): In-memory cache of user data keyed by email
        active (Dict): In-memory cache of active sessions
    """

    def __init__(self, db_path: str = "users.db"):
        self.db_path = db_path
        self.lock = threading.Lock()
        self._init_database()
        # {email: {id, password_hash}}
        self.users: Dict[str, Dict[str, str]] = {}
        self.user_ids = set()
        # {token: user_id}
        self.active: Dict[str, str] = {}
        self._load_from_database()

    def _init_database(self):
        with self._get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT UNIQUE NOT NULL,
                password_hash TEXT NOT NULL,
                created_time TEXT NOT NULL
            )
            """)
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS sessions (
                token TEXT PRIMARY KEY,
                user_id TEXT NOT NULL,
                created_time TEXT NOT NULL,
                FOREIGN KEY (user_id) REFERENCES users (id)
            )
            """)
            conn.commit()

    @contextlib.contextmanager
    def _get_db_connection(self):
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        try:
            yield conn
        finally:
            conn.close()

    def _load_from_database(self):
        with self._get_db_connection() as conn:
            cursor = conn.cursor()
            cursor.execute("SELECT id, email, password_hash FROM users")
            for user_id, email, password_hash in cursor.fetchall():
                self.users[email] = {"id": user_id, "password_hash": password_hash}
                self.user_ids.add(user_id)
            cursor.execute("SELECT token, user_id FROM sessions")
            for token, user_id in cursor.fetchall():
                self.active[token] = user_id

    def add_user(self, email: str, password: str) -> str:
        """
        Register a new user and return its id.

        Raises:
            AuthError: If email already exists or password is too short
        """
        with self.lock:
            if email in self.users:
                raise AuthError("Email already exists")
            if len(password) < 6:
                raise AuthError("Password must be at least 6 characters long")

            uid = make_id("usr")
            password_hash = hash_password(password)
            with self._get_db_connection() as conn:
                conn.execute(
                    "INSERT INTO users (id, email, password_hash, created_time) VALUES (?, ?, ?, ?)",
                    (uid, email, password_hash, time_now())
                )
                conn.commit()

            self.users[email] = {"id": uid, "password_hash": password_hash}
            self.user_ids.add(uid)
            logger.info("Registered user %s", uid)
            return uid

    def login(self, email: str, password: str) -> str:
        """
        Authenticate user and return a session token.

        Raises:
            AuthError: If email doesn't exist or password is incorrect
        """
        with self.lock:
            user = self.users.get(email)
            if not user or user["password_hash"] != hash_password(password):
                raise AuthError("Invalid email or password")

            token = make_id("sess")
            with self._get_db_connection() as conn:
                conn.execute(
                    "INSERT INTO sessions (token, user_id, created_time) VALUES (?, ?, ?)",
                    (token, user["id"], time_now())
                )
                conn.commit()

            self.active[token] = user["id"]
            return token

    def validate(self, token: str) -> str:
        """
        Return the user id behind a session token (bare or "Bearer " prefixed).

        Raises:
            AuthError: If token is missing, invalid, or expired
        """
        if not token:
            raise AuthError("Authorization token is required")
        if token.startswith("Bearer "):
            token = token[7:]
        if token not in self.active:
            raise AuthError("Invalid or expired session token")
        return self.active[token]

    def logout(self, token: str) -> bool:
        if token and token.startswith("Bearer "):
            token = token[7:]
        with self.lock:
            if token not in self.active:
                return False
            with self._get_db_connection() as conn:
                conn.execute("DELETE FROM sessions WHERE token=?", (token,))
                conn.commit()
            del self.active[token]
            return True

    def exists(self, user_id: Optional[str]) -> bool:
        """Whether ``user_id`` belongs to a registered user."""
        return bool(user_id) and user_id in self.user_ids


class Database:
    """
    SQLite database holding artifacts and their versions.

    Both stores share one instance so that "append a version, repoint the
    artifact, bump its counters" runs as a single transaction. Writes are
    serialized by ``lock``; counters are always updated with
    ``col = col + 1`` in SQL, never read-modify-write in Python.

    Attributes:
        db_path (str): Path to the SQLite database file
        lock (threading.Lock): Serializes write transactions
    """

    def __init__(self, db_path: str = "sitegen.db"):
        self.db_path = db_path
        self.lock = threading.Lock()
        self._create_tables()
        logger.info("Database initialized: %s", db_path)

    @contextlib.contextmanager
    def connection(self):
        """
        Open a connection with WAL mode and full sync, closing it afterwards.

        Yields:
            sqlite3.Connection: Connection with ``sqlite3.Row`` rows
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=30)
        conn.row_factory = sqlite3.Row
        conn.execute('PRAGMA journal_mode=WAL;')
        conn.execute('PRAGMA synchronous=FULL;')
        try:
            yield conn
        finally:
            conn.close()

    @contextlib.contextmanager
    def transaction(self):
        """Run the block as one write transaction, rolled back if it raises."""
        with self.lock:
            with self.connection() as conn:
                try:
                    yield conn
                    conn.commit()
                except Exception:
                    conn.rollback()
                    raise

    def _create_tables(self):
        with self.connection() as conn:
            cursor = conn.cursor()
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS artifacts (
                id TEXT PRIMARY KEY,
                owner_id TEXT NOT NULL,
                display_name TEXT NOT NULL,
                description TEXT,
                content_type TEXT NOT NULL,
                visibility TEXT NOT NULL,
                tags TEXT NOT NULL DEFAULT '[]',
                thumbnail TEXT DEFAULT '',
                latest_version_id TEXT NOT NULL,
                version_count INTEGER NOT NULL DEFAULT 1,
                edit_count INTEGER NOT NULL DEFAULT 0,
                view_count INTEGER NOT NULL DEFAULT 0,
                fork_count INTEGER NOT NULL DEFAULT 0,
                is_fork INTEGER NOT NULL DEFAULT 0,
                origin_artifact_id TEXT,
                origin_owner_id TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """)
            cursor.execute("""
            CREATE TABLE IF NOT EXISTS versions (
                id TEXT PRIMARY KEY,
                artifact_id TEXT NOT NULL,
                content TEXT NOT NULL,
                instruction TEXT NOT NULL,
                edit_instruction TEXT,
                content_type TEXT NOT NULL,
                version_number REAL NOT NULL,
                is_initial INTEGER NOT NULL DEFAULT 0,
                parent_version_id TEXT,
                derived_from_version_id TEXT,
                created_at TEXT NOT NULL
            )
            """)
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_owner_id ON artifacts(owner_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_updated_at ON artifacts(updated_at DESC)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_artifacts_origin ON artifacts(origin_artifact_id)")
            cursor.execute("CREATE INDEX IF NOT EXISTS idx_versions_artifact_id ON versions(artifact_id)")
            # One initial version per artifact
            cursor.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS idx_versions_one_initial
            ON versions(artifact_id) WHERE is_initial = 1
            """)
            conn.commit()


class VersionStore:
    """Append-only history of generated content. Versions are never updated."""

    def __init__(self, db: Database):
        self.db = db

    def append(self, artifact_id: str, content: str, instruction: str,
               edit_instruction: Optional[str], content_type: str,
               parent_version_id: Optional[str], version_number: float,
               is_initial: bool, derived_from_version_id: Optional[str] = None,
               conn: Optional[sqlite3.Connection] = None) -> Version:
        """
        Write a new version.

        Pass ``conn`` to take part in a caller's transaction; otherwise the
        version is written in its own.
        """
        version = Version(
            id=make_id("ver"),
            artifact_id=artifact_id,
            content=content,
            instruction=instruction,
            edit_instruction=edit_instruction,
            content_type=content_type,
            version_number=version_number,
            is_initial=is_initial,
            parent_version_id=parent_version_id,
            created_at=time_now(),
            derived_from_version_id=derived_from_version_id,
        )
        if conn is not None:
            self._insert(conn, version)
        else:
            with self.db.transaction() as own:
                self._insert(own, version)
        return version

    @staticmethod
    def _insert(conn: sqlite3.Connection, version: Version):
        conn.execute(
            """INSERT INTO versions (id, artifact_id, content, instruction, edit_instruction,
                   content_type, version_number, is_initial, parent_version_id,
                   derived_from_version_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (version.id, version.artifact_id, version.content, version.instruction,
             version.edit_instruction, version.content_type, version.version_number,
             int(version.is_initial), version.parent_version_id,
             version.derived_from_version_id, version.created_at)
        )

    def find(self, version_id: Optional[str]) -> Optional[Version]:
        if not version_id:
            return None
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM versions WHERE id=?", (version_id,)).fetchone()
        return _row_to_version(row) if row else None

    def get(self, version_id: str) -> Version:
        """
        Raises:
            NotFoundError: If no such version exists
        """
        version = self.find(version_id)
        if version is None:
            raise NotFoundError("Version not found")
        return version

    def list_for_artifact(self, artifact_id: str) -> List[Version]:
        """All versions of an artifact, highest version number first."""
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM versions WHERE artifact_id=? ORDER BY version_number DESC, created_at DESC",
                (artifact_id,)
            ).fetchall()
        return [_row_to_version(row) for row in rows]

    def highest_for_artifact(self, artifact_id: str) -> Optional[Version]:
        versions = self.list_for_artifact(artifact_id)
        return versions[0] if versions else None

    def count_for_artifact(self, artifact_id: str) -> int:
        with self.db.connection() as conn:
            row = conn.execute("SELECT COUNT(*) FROM versions WHERE artifact_id=?", (artifact_id,)).fetchone()
        return row[0]

    def delete_for_artifact(self, artifact_id: str, conn: Optional[sqlite3.Connection] = None) -> int:
        """Delete every version of an artifact. Deleting nothing is not an error."""
        if conn is not None:
            return conn.execute("DELETE FROM versions WHERE artifact_id=?", (artifact_id,)).rowcount
        with self.db.transaction() as own:
            return own.execute("DELETE FROM versions WHERE artifact_id=?", (artifact_id,)).rowcount


class ArtifactStore:
    """
    Current state of every generated site, and the create/edit/read lifecycle.

    Content is produced through the injected ``GenerationCache``; owner
    identities are checked against the injected user service (anything with
    an ``exists(user_id)`` method).

    Attributes:
        db (Database): Shared artifact/version database
        versions (VersionStore): History store
        cache (GenerationCache): Memoized content generator
        users: User identity check
        config (Config): Defaults and limits
    """

    def __init__(self, db: Database, versions: VersionStore, cache: GenerationCache,
                 users, config: Optional[Config] = None):
        self.db = db
        self.versions = versions
        self.cache = cache
        self.users = users
        self.config = config or Config()

    # -------------------------------
    # Reads
    # -------------------------------

    def find(self, artifact_id: Optional[str]) -> Optional[Artifact]:
        if not artifact_id:
            return None
        with self.db.connection() as conn:
            row = conn.execute("SELECT * FROM artifacts WHERE id=?", (artifact_id,)).fetchone()
        return _row_to_artifact(row) if row else None

    def load(self, artifact_id: str) -> Artifact:
        artifact = self.find(artifact_id)
        if artifact is None:
            raise NotFoundError("Website not found")
        return artifact

    def load_visible(self, artifact_id: str, requester_id: Optional[str]) -> Artifact:
        artifact = self.load(artifact_id)
        if not can_view(requester_id, artifact):
            raise AccessDeniedError()
        return artifact

    def get(self, artifact_id: str, requester_id: Optional[str] = None,
            include_content: bool = True) -> ArtifactView:
        """
        Read an artifact with its latest version and count the view.

        Args:
            artifact_id (str): Artifact to read
            requester_id (Optional[str]): Caller identity, None for anonymous
            include_content (bool): Whether the latest version's markup is returned

        Returns:
            ArtifactView: Artifact (with the incremented view count) and latest version

        Raises:
            NotFoundError: If the artifact does not exist
            AccessDeniedError: If it is private and the caller is not the owner
        """
        artifact = self.load_visible(artifact_id, requester_id)

        with self.db.transaction() as conn:
            conn.execute("UPDATE artifacts SET view_count = view_count + 1 WHERE id=?", (artifact.id,))
        artifact = self.find(artifact.id) or artifact

        latest = self.versions.find(artifact.latest_version_id)
        return ArtifactView(artifact=artifact, latest_version=latest, include_content=include_content)

    def get_version(self, version_id: str, requester_id: Optional[str] = None) -> Version:
        """Read one historical version, subject to its artifact's visibility."""
        version = self.versions.get(version_id)
        artifact = self.find(version.artifact_id)
        if artifact is None:
            raise NotFoundError("Version not found")
        if not can_view(requester_id, artifact):
            raise AccessDeniedError()
        return version

    def list(self, owner_id: Optional[str] = None, public_only: bool = False,
             content_type: Optional[str] = None, tags: Optional[Iterable[str]] = None,
             limit: Optional[int] = None, requester_id: Optional[str] = None) -> List[Artifact]:
        """
        List artifacts, most recently updated first.

        Without ``owner_id`` or ``public_only`` only public artifacts are
        returned. An owner's private artifacts appear only when the requester
        is that owner. ``tags`` matches artifacts carrying any of the tags.
        """
        clauses, params = [], []
        if owner_id:
            clauses.append("owner_id=?")
            params.append(owner_id)
        if public_only or not owner_id or requester_id != owner_id:
            clauses.append("visibility=?")
            params.append(Visibility.PUBLIC.value)
        if content_type:
            clauses.append("content_type=?")
            params.append(content_type)

        query = "SELECT * FROM artifacts"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY updated_at DESC, created_at DESC"

        with self.db.connection() as conn:
            rows = conn.execute(query, params).fetchall()
        artifacts = [_row_to_artifact(row) for row in rows]

        wanted = set(split_tags(tags))
        if wanted:
            artifacts = [a for a in artifacts if wanted.intersection(a.tags)]
        return artifacts[:self._clamp_limit(limit)]

    def list_versions(self, artifact_id: str,
                      requester_id: Optional[str] = None) -> Tuple[Artifact, List[Dict[str, Any]]]:
        """
        Return the artifact and its version history without content.

        Raises:
            NotFoundError: If the artifact does not exist
            AccessDeniedError: If it is private and the caller is not the owner
        """
        artifact = self.load_visible(artifact_id, requester_id)
        history = [v.to_dict(include_content=False) for v in self.versions.list_for_artifact(artifact.id)]
        return artifact, history

    def list_forks(self, artifact_id: str, requester_id: Optional[str] = None) -> List[Artifact]:
        """Artifacts forked from ``artifact_id`` that the requester may see."""
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM artifacts WHERE origin_artifact_id=? ORDER BY created_at DESC",
                (artifact_id,)
            ).fetchall()
        return [a for a in map(_row_to_artifact, rows) if can_view(requester_id, a)]

    def _clamp_limit(self, limit: Optional[int]) -> int:
        if limit is None:
            return self.config.DEFAULT_LIST_LIMIT
        return max(1, min(int(limit), self.config.MAX_LIST_LIMIT))

    # -------------------------------
    # Writes
    # -------------------------------

    def create(self, owner_id: str, metadata: Optional[Dict[str, Any]],
               generation_request: Dict[str, Any]) -> Tuple[Artifact, Version]:
        """
        Generate content and store it as a new artifact with its initial version.

        Args:
            owner_id (str): Registered user who will own the artifact
            metadata (Dict): Optional display_name, description, visibility, tags, thumbnail
            generation_request (Dict): ``instruction`` and optional ``content_type``

        Returns:
            Tuple[Artifact, Version]: The new artifact and its version 1.0

        Raises:
            ValidationError: Unknown owner, empty instruction or bad metadata
            UpstreamGenerationError: Generation failed; nothing was stored
        """
        metadata = metadata or {}
        if not self.users.exists(owner_id):
            raise ValidationError("User does not exist")
        instruction = (generation_request.get("instruction") or "").strip()
        if not instruction:
            raise ValidationError("Prompt is required")
        content_type = coerce_content_type(generation_request.get("content_type"),
                                           self.config.DEFAULT_CONTENT_TYPE)
        visibility = coerce_visibility(metadata.get("visibility"))

        content = self.cache.get_or_generate(instruction, content_type)

        now = time_now()
        artifact_id = make_id("site")
        with self.db.transaction() as conn:
            version = self.versions.append(
                artifact_id=artifact_id,
                content=content,
                instruction=instruction,
                edit_instruction=None,
                content_type=content_type,
                parent_version_id=None,
                version_number=INITIAL_VERSION_NUMBER,
                is_initial=True,
                conn=conn,
            )
            artifact = Artifact(
                id=artifact_id,
                owner_id=owner_id,
                display_name=metadata.get("display_name") or "New Website",
                description=metadata.get("description") or "",
                content_type=content_type,
                visibility=visibility,
                latest_version_id=version.id,
                tags=split_tags(metadata.get("tags")),
                thumbnail=metadata.get("thumbnail") or "",
                created_at=now,
                updated_at=now,
            )
            self._insert(conn, artifact)

        logger.info("Created website %s for %s (type=%s)", artifact.id, owner_id, content_type)
        return artifact, version

    def edit(self, artifact_id: str, requester_id: str, edit_instruction: str,
             is_major_edit: bool = False) -> Tuple[Artifact, Version]:
        """
        Regenerate an artifact from its latest version plus an edit request.

        The new version is appended, the artifact repointed to it and its
        counters bumped in one transaction. Concurrent edits both survive;
        whichever commits last becomes latest.

        Raises:
            ValidationError: Empty edit instruction
            NotFoundError: No such artifact (or it vanished mid-edit)
            AccessDeniedError: Requester is not the owner
            UpstreamGenerationError: Generation failed; nothing was stored
        """
        edit_instruction = (edit_instruction or "").strip()
        if not edit_instruction:
            raise ValidationError("Edit prompt is required")
        artifact = self.load(artifact_id)
        require_owner(requester_id, artifact)

        latest = self.versions.find(artifact.latest_version_id)
        if latest is None:
            raise NotFoundError("No version found for website")

        combined = (
            f"Original Prompt: {latest.instruction}\n"
            f"Original Type: {latest.content_type}\n\n"
            f"Edit Request: {edit_instruction}\n\n"
            f"Please modify the following HTML according to the edit request:\n"
            f"{latest.content}"
        )
        content = self.cache.get_or_generate(combined, latest.content_type)

        with self.db.transaction() as conn:
            version = self.versions.append(
                artifact_id=artifact.id,
                content=content,
                instruction=latest.instruction,
                edit_instruction=edit_instruction,
                content_type=latest.content_type,
                parent_version_id=latest.id,
                version_number=next_version_number(latest.version_number, is_major_edit),
                is_initial=False,
                conn=conn,
            )
            updated = conn.execute(
                """UPDATE artifacts SET latest_version_id=?, version_count = version_count + 1,
                       edit_count = edit_count + 1, updated_at=?
                   WHERE id=?""",
                (version.id, version.created_at, artifact.id)
            ).rowcount
            if updated == 0:
                raise NotFoundError("Website not found")

        logger.info("Edited website %s -> version %.1f", artifact.id, version.version_number)
        return self.load(artifact.id), version

    def update_metadata(self, artifact_id: str, requester_id: str, fields: Dict[str, Any]) -> Artifact:
        """
        Change display metadata. Version history and counters are left alone.

        Only display_name, description, visibility, tags and thumbnail are
        applied; any other key is ignored.
        """
        artifact = self.load(artifact_id)
        require_owner(requester_id, artifact)

        updates: Dict[str, Any] = {}
        for key in METADATA_FIELDS:
            if key not in fields or fields[key] is None:
                continue
            value = fields[key]
            if key == "visibility":
                value = coerce_visibility(value)
            elif key == "tags":
                value = json.dumps(split_tags(value))
            elif key == "display_name" and not str(value).strip():
                raise ValidationError("Project name cannot be empty")
            updates[key] = value
        updates["updated_at"] = time_now()

        assignments = ", ".join(f"{column}=?" for column in updates)
        with self.db.transaction() as conn:
            updated = conn.execute(
                f"UPDATE artifacts SET {assignments} WHERE id=?",
                (*updates.values(), artifact.id)
            ).rowcount
            if updated == 0:
                raise NotFoundError("Website not found")
        return self.load(artifact.id)

    def delete(self, artifact_id: str, requester_id: str) -> bool:
        """
        Delete an artifact and every one of its versions in one transaction.

        Raises:
            NotFoundError: If the artifact does not exist
            AccessDeniedError: Requester is not the owner
        """
        artifact = self.load(artifact_id)
        require_owner(requester_id, artifact)
        with self.db.transaction() as conn:
            removed = self.versions.delete_for_artifact(artifact.id, conn=conn)
            conn.execute("DELETE FROM artifacts WHERE id=?", (artifact.id,))
        logger.info("Deleted website %s and %d versions", artifact.id, removed)
        return True

    def repair_latest(self, artifact_id: str) -> Artifact:
        """
        Repoint an artifact at its highest-numbered version and recount its history.

        Safe to run any number of times; used after a crash between a version
        being written and the artifact being repointed.
        """
        artifact = self.load(artifact_id)
        highest = self.versions.highest_for_artifact(artifact.id)
        if highest is None:
            raise NotFoundError("No version found for website")
        with self.db.transaction() as conn:
            count = conn.execute("SELECT COUNT(*) FROM versions WHERE artifact_id=?",
                                 (artifact.id,)).fetchone()[0]
            conn.execute(
                "UPDATE artifacts SET latest_version_id=?, version_count=?, edit_count=? WHERE id=?",
                (highest.id, count, max(count - 1, 0), artifact.id)
            )
        if highest.id != artifact.latest_version_id:
            logger.warning("Repointed website %s from %s to %s",
                           artifact.id, artifact.latest_version_id, highest.id)
        return self.load(artifact.id)

    @staticmethod
    def _insert(conn: sqlite3.Connection, artifact: Artifact):
        conn.execute(
            """INSERT INTO artifacts (id, owner_id, display_name, description, content_type,
                   visibility, tags, thumbnail, latest_version_id, version_count, edit_count,
                   view_count, fork_count, is_fork, origin_artifact_id, origin_owner_id,
                   created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (artifact.id, artifact.owner_id, artifact.display_name, artifact.description,
             artifact.content_type, artifact.visibility, json.dumps(artifact.tags),
             artifact.thumbnail, artifact.latest_version_id, artifact.version_count,
             artifact.edit_count, artifact.view_count, artifact.fork_count,
             int(artifact.is_fork), artifact.origin_artifact_id, artifact.origin_owner_id,
             artifact.created_at, artifact.updated_at)
        )


class ForkEngine:
    """Copies a public artifact's latest version into a new artifact owned by someone else."""

    def __init__(self, artifacts: ArtifactStore):
        self.artifacts = artifacts
        self.versions = artifacts.versions
        self.db = artifacts.db
        self.users = artifacts.users

    def fork(self, source_artifact_id: str, requester_id: str,
             overrides: Optional[Dict[str, Any]] = None) -> Tuple[Artifact, Version]:
        """
        Fork a public artifact.

        The new artifact starts a fresh lineage at version 1.0 whose
        ``parent_version_id`` (and ``derived_from_version_id``) point at the
        source's latest version. The source only has its fork count bumped.
        Every call makes a new fork.

        Args:
            source_artifact_id (str): Public artifact to copy
            requester_id (str): Registered user who will own the fork
            overrides (Dict): Optional display_name, description, visibility, tags, instruction

        Raises:
            ValidationError: Unknown requester
            NotFoundError: No such source artifact
            ForbiddenError: Source is private, whoever asks
        """
        overrides = overrides or {}
        if not self.users.exists(requester_id):
            raise ValidationError("User does not exist")
        source = self.artifacts.load(source_artifact_id)
        if not source.is_public:
            raise ForbiddenError()
        latest = self.versions.find(source.latest_version_id)
        if latest is None:
            raise NotFoundError("No version found for website")

        now = time_now()
        fork_id = make_id("site")
        tags = overrides.get("tags")
        with self.db.transaction() as conn:
            version = self.versions.append(
                artifact_id=fork_id,
                content=latest.content,
                instruction=overrides.get("instruction") or latest.instruction,
                edit_instruction=None,
                content_type=latest.content_type,
                parent_version_id=latest.id,
                version_number=INITIAL_VERSION_NUMBER,
                is_initial=True,
                derived_from_version_id=latest.id,
                conn=conn,
            )
            artifact = Artifact(
                id=fork_id,
                owner_id=requester_id,
                display_name=overrides.get("display_name") or f"Fork of {source.display_name}",
                description=overrides.get("description") or source.description,
                content_type=latest.content_type,
                visibility=coerce_visibility(overrides.get("visibility")),
                latest_version_id=version.id,
                tags=split_tags(tags) if tags is not None else list(source.tags),
                is_fork=True,
                origin_artifact_id=source.id,
                origin_owner_id=source.owner_id,
                created_at=now,
                updated_at=now,
            )
            self.artifacts._insert(conn, artifact)
            updated = conn.execute(
                "UPDATE artifacts SET fork_count = fork_count + 1 WHERE id=?", (source.id,)
            ).rowcount
            if updated == 0:
                raise NotFoundError("Original website not found")

        logger.info("Forked website %s into %s for %s", source.id, artifact.id, requester_id)
        return artifact, version


class VariationEngine:
    """
    Generates uncommitted drafts. Nothing here touches the artifact store.

    A batch is fail-fast: the first variation that fails to generate aborts
    the batch and its error propagates.
    """

    def __init__(self, cache: GenerationCache, config: Optional[Config] = None):
        self.cache = cache
        self.config = config or Config()

    def preview(self, instruction: str, content_type: Optional[str] = None) -> str:
        """Generate content for an instruction without saving it."""
        instruction = (instruction or "").strip()
        if not instruction:
            raise ValidationError("Prompt is required")
        content_type = coerce_content_type(content_type, self.config.DEFAULT_CONTENT_TYPE)
        return self.cache.get_or_generate(instruction, content_type)

    def generate_variations(self, instruction: str, content_type: Optional[str] = None,
                            count: Optional[int] = None) -> List[Variation]:
        """
        Generate ``count`` drafts, each from a distinct instruction so none share a cache entry.

        ``count`` defaults to DEFAULT_VARIATIONS and is clamped to
        ``[1, MAX_VARIATIONS]``.
        """
        instruction = (instruction or "").strip()
        if not instruction:
            raise ValidationError("Prompt is required")
        content_type = coerce_content_type(content_type, self.config.DEFAULT_CONTENT_TYPE)
        if count is None:
            count = self.config.DEFAULT_VARIATIONS
        count = max(1, min(int(count), self.config.MAX_VARIATIONS))

        variations = []
        for index in range(1, count + 1):
            varied = f"{instruction} {VARIATION_MARKER.format(index=index)}"
            content = self.cache.get_or_generate(varied, content_type)
            variations.append(Variation(
                variation_index=index,
                content=content,
                instruction=varied,
                content_type=content_type,
            ))
        return variations

"""Session content storage on Google Cloud Storage with local mode support."""

import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import structlog

from app.config import Settings
from app.models.schemas import SESSION_ID_PATTERN, UserContent

logger = structlog.get_logger()

SESSION_ID_RE = re.compile(SESSION_ID_PATTERN)


class StorageError(Exception):
    """Raised when session content cannot be read or written."""

    pass


class InvalidSessionIdError(StorageError):
    """Raised when a session id cannot be used as a storage key."""

    pass


def validate_session_id(session_id: str) -> str:
    """Return the session id if it is safe to use as a file name."""
    if not SESSION_ID_RE.match(session_id):
        raise InvalidSessionIdError(f"Invalid session id: {session_id!r}")
    return session_id


class SessionStore:
    """Keeps each session's user content (image, scene, prompt)."""

    def __init__(self, settings: Settings):
        """Initialize the store with settings."""
        self.settings = settings
        self.local_mode = settings.local_mode
        self.bucket_name = settings.gcs_bucket_name
        self._client = None
        self._bucket = None

    @property
    def client(self):
        """Get or create GCS client (only in cloud mode)."""
        if self.local_mode:
            return None

        if self._client is None:
            from google.cloud import storage

            self._client = storage.Client()
            logger.info("gcs_client_initialized", bucket=self.bucket_name)
        return self._client

    @property
    def bucket(self):
        """Get or create bucket reference (only in cloud mode)."""
        if self.local_mode:
            return None

        if self._bucket is None:
            self._bucket = self.client.bucket(self.bucket_name)
        return self._bucket

    @property
    def local_dir(self) -> Path:
        return Path(self.settings.local_data_path) / "sessions"

    async def get_user_content(self, session_id: str) -> Optional[UserContent]:
        """Return the stored user content, or None if the session has none."""
        validate_session_id(session_id)
        if self.local_mode:
            data = self._read_local(session_id)
        else:
            data = self._read_gcs(session_id)

        if data is None:
            return None
        try:
            return UserContent.model_validate_json(data)
        except ValueError as e:
            logger.error("user_content_corrupt", session_id=session_id, error=str(e))
            raise StorageError(f"Stored content for {session_id} is unreadable") from e

    async def save_user_content(self, session_id: str, content: UserContent) -> None:
        """Replace the session's user content."""
        validate_session_id(session_id)
        data = content.model_dump_json()
        try:
            if self.local_mode:
                self._write_local(session_id, data)
            else:
                self._write_gcs(session_id, data)
        except Exception as e:
            logger.error("user_content_save_failed", session_id=session_id, error=str(e))
            raise StorageError(f"Failed to store content for {session_id}: {str(e)}") from e

        logger.info(
            "user_content_saved",
            session_id=session_id,
            has_voxel=content.voxel is not None,
            local=self.local_mode,
        )

    async def attach_scene(self, session_id: str, html: str) -> Optional[UserContent]:
        """Store a generated scene on the session's existing user content.

        Sessions without stored content are left untouched and None is returned.
        """
        content = await self.get_user_content(session_id)
        if content is None:
            logger.info("scene_not_attached", session_id=session_id, reason="no_user_content")
            return None

        updated = content.model_copy(
            update={"voxel": html, "updated_at": datetime.now(timezone.utc)}
        )
        await self.save_user_content(session_id, updated)
        return updated

    def _read_local(self, session_id: str) -> Optional[str]:
        path = self.local_dir / f"{session_id}.json"
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write_local(self, session_id: str, data: str) -> None:
        self.local_dir.mkdir(parents=True, exist_ok=True)
        path = self.local_dir / f"{session_id}.json"
        path.write_text(data, encoding="utf-8")

    def _read_gcs(self, session_id: str) -> Optional[str]:
        blob = self.bucket.blob(f"sessions/{session_id}.json")
        try:
            if not blob.exists():
                return None
            return blob.download_as_text()
        except Exception as e:
            logger.error("gcs_user_content_load_failed", session_id=session_id, error=str(e))
            raise StorageError(f"Failed to load content for {session_id}: {str(e)}") from e

    def _write_gcs(self, session_id: str, data: str) -> None:
        blob = self.bucket.blob(f"sessions/{session_id}.json")
        blob.upload_from_string(data, content_type="application/json")

# storage.py
"""
Session and asset persistence.

Two backends: Supabase (table `game_sessions`, public bucket `game-assets`)
for deployments, and a file-backed store under SITE_DIR for local runs and
tests. Both expose the same small interface.
"""
from __future__ import annotations

import json
import logging
import os
import re
import uuid
from pathlib import Path
from typing import Optional

from supabase import Client

from data_class import Session, SessionStatus
from errors import SessionBusyError, StorageError
from settings import Settings
from supabase_client import get_supabase, public_url
from utils import safe_asset_name

logger = logging.getLogger(__name__)

_LOCAL_ID = re.compile(r"[A-Za-z0-9-]+")


class SessionStore:
    def get(self, session_id: str) -> Optional[Session]:
        raise NotImplementedError

    def insert(self, session: Session) -> Session:
        raise NotImplementedError

    def update(self, session: Session, *, expected_status: Optional[SessionStatus] = None) -> None:
        """
        Write every mutable column of `session` in one update. With
        `expected_status`, the write only lands if the stored status still
        matches; otherwise SessionBusyError.
        """
        raise NotImplementedError


class AssetStore:
    def upload(self, session_id: str, name: str, data: bytes) -> str:
        """Store a PNG keyed by (session_id, name) and return its public URL."""
        raise NotImplementedError


# -------------------- Supabase --------------------

class SupabaseSessionStore(SessionStore):
    def __init__(self, client: Client, table: str = "game_sessions"):
        self.client = client
        self.table = table

    def get(self, session_id: str) -> Optional[Session]:
        try:
            resp = self.client.table(self.table).select("*").eq("id", session_id).limit(1).execute()
        except Exception as e:
            # invalid uuid syntax: the row cannot exist
            if getattr(e, "code", None) == "22P02":
                return None
            raise StorageError(f"Failed to load session {session_id}: {e}") from e
        rows = resp.data or []
        return Session.from_row(rows[0]) if rows else None

    def insert(self, session: Session) -> Session:
        row = session.to_row()
        for key in ("id", "updated_at"):
            if not row.get(key):
                row.pop(key, None)
        try:
            resp = self.client.table(self.table).insert(row).execute()
        except Exception as e:
            raise StorageError(f"Failed to create session: {e}") from e
        if not resp.data:
            raise StorageError("Failed to create session: no row returned")
        return Session.from_row(resp.data[0])

    def update(self, session: Session, *, expected_status: Optional[SessionStatus] = None) -> None:
        row = session.to_row()
        row.pop("id")
        query = self.client.table(self.table).update(row).eq("id", session.id)
        if expected_status is not None:
            query = query.eq("status", expected_status.value)
        try:
            resp = query.execute()
        except Exception as e:
            raise StorageError(f"Failed to update session {session.id}: {e}") from e
        if expected_status is not None and not resp.data:
            raise SessionBusyError(
                f"Session {session.id} is no longer {expected_status.value}; another change got there first"
            )


class SupabaseAssetStore(AssetStore):
    def __init__(self, client: Client, base_url: str, bucket: str = "game-assets"):
        self.client = client
        self.base_url = base_url
        self.bucket = bucket

    def upload(self, session_id: str, name: str, data: bytes) -> str:
        path = f"{session_id}/{safe_asset_name(name)}.png"
        logger.info("Uploading image to: %s", path)
        try:
            self.client.storage.from_(self.bucket).upload(
                path=path,
                file=data,
                file_options={"content-type": "image/png", "upsert": "true"},
            )
        except Exception as e:
            raise StorageError(f"Failed to upload {path}: {e}") from e
        return public_url(self.base_url, self.bucket, path)


# -------------------- Local files --------------------

class LocalSessionStore(SessionStore):
    """
    One JSON file per session under `root/sessions`.
    """

    def __init__(self, root: Path):
        self.dir = Path(root) / "sessions"
        self.dir.mkdir(parents=True, exist_ok=True)

    def _path(self, session_id: str) -> Optional[Path]:
        if not _LOCAL_ID.fullmatch(session_id or ""):
            return None
        return self.dir / f"{session_id}.json"

    def get(self, session_id: str) -> Optional[Session]:
        path = self._path(session_id)
        if path is None or not path.exists():
            return None
        return Session.from_row(json.loads(path.read_text(encoding="utf-8")))

    def insert(self, session: Session) -> Session:
        session = session.with_changes(id=session.id or str(uuid.uuid4()))
        self._write(session)
        return session

    def update(self, session: Session, *, expected_status: Optional[SessionStatus] = None) -> None:
        current = self.get(session.id)
        if current is None:
            raise StorageError(f"Failed to update session {session.id}: not found")
        if expected_status is not None and current.status is not expected_status:
            raise SessionBusyError(
                f"Session {session.id} is no longer {expected_status.value}; another change got there first"
            )
        self._write(session)

    def _write(self, session: Session) -> None:
        path = self._path(session.id)
        if path is None:
            raise StorageError(f"Invalid session id: {session.id!r}")
        tmp = path.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(session.to_row(), ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, path)


class LocalAssetStore(AssetStore):
    def __init__(self, root: Path, base_url: str):
        self.dir = Path(root) / "assets"
        self.base_url = base_url.rstrip("/")

    def upload(self, session_id: str, name: str, data: bytes) -> str:
        filename = f"{safe_asset_name(name)}.png"
        folder = self.dir / safe_asset_name(session_id)
        folder.mkdir(parents=True, exist_ok=True)
        (folder / filename).write_bytes(data)
        return f"{self.base_url}/{safe_asset_name(session_id)}/{filename}"


def build_stores(settings: Settings) -> tuple[SessionStore, AssetStore]:
    if settings.storage_backend == "local":
        return (
            LocalSessionStore(settings.site_dir),
            LocalAssetStore(settings.site_dir, settings.public_asset_base_url),
        )
    if settings.storage_backend != "supabase":
        raise RuntimeError(f"Unknown STORAGE_BACKEND {settings.storage_backend!r}; use 'supabase' or 'local'")
    client = get_supabase(settings)
    return (
        SupabaseSessionStore(client, settings.sessions_table),
        SupabaseAssetStore(client, settings.supabase_url or "", settings.asset_bucket),
    )

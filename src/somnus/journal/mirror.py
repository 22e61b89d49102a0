import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Any
from uuid import uuid4

from somnus.core.config import SOMNUS_ROOT

logger = logging.getLogger("somnus.journal.mirror")

DREAMS_BUCKET = "dream_journal_entries"
USERS_BUCKET = "dream_journal_users"
FEEDBACK_BUCKET = "dream_journal_feedbacks"


class UsernameTaken(Exception):
    pass


class LocalMirror:
    """
    Device-local copy of dreams, users and feedback for guest and offline use.

    Each bucket is one plain JSON file. The server store stays authoritative:
    dreams written here are marked ``pending`` and ``flush`` pushes them one
    way to the server, swapping the local id for the server-assigned one.
    """

    def __init__(self, root: Optional[Path] = None):
        self.root = root or (SOMNUS_ROOT / "mirror")
        self.root.mkdir(parents=True, exist_ok=True)

    def _bucket_file(self, bucket: str) -> Path:
        return self.root / f"{bucket}.json"

    def _load(self, bucket: str) -> List[Dict[str, Any]]:
        path = self._bucket_file(bucket)
        if not path.exists():
            return []
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except Exception as e:
            logger.error(f"Failed to load {path}: {e}")
            return []

    def _save(self, bucket: str, items: List[Dict[str, Any]]) -> None:
        path = self._bucket_file(bucket)
        try:
            path.write_text(json.dumps(items, indent=2, ensure_ascii=False), encoding="utf-8")
        except Exception as e:
            logger.error(f"Failed to save {path}: {e}")

    # --- Users ---

    def get_users(self) -> List[Dict[str, Any]]:
        return self._load(USERS_BUCKET)

    def register_user(self, username: str) -> Dict[str, Any]:
        users = self.get_users()
        if any(u["username"].lower() == username.lower() for u in users):
            raise UsernameTaken(username)
        user = {"id": str(uuid4()), "username": username, "createdAt": datetime.now().isoformat()}
        self._save(USERS_BUCKET, users + [user])
        return user

    def login_user(self, username: str) -> Optional[Dict[str, Any]]:
        for user in self.get_users():
            if user["username"].lower() == username.lower():
                return user
        return None

    # --- Dreams ---

    def _all_dreams(self) -> List[Dict[str, Any]]:
        return self._load(DREAMS_BUCKET)

    def save_dream(self, text: str, user_id: Optional[str] = None, username: Optional[str] = None) -> Dict[str, Any]:
        dream = {
            "id": str(uuid4()),
            "text": text,
            "date": datetime.now().isoformat(),
            "userId": user_id or None,
            "username": username,
            "pending": True,
        }
        self._save(DREAMS_BUCKET, [dream] + self._all_dreams())
        return dream

    def get_dreams(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        """A user's dreams, or only the anonymous ones when no user is given."""
        if user_id:
            return [d for d in self._all_dreams() if d.get("userId") == user_id]
        return [d for d in self._all_dreams() if not d.get("userId")]

    def update_dream(self, dream_id: str, **updates: Any) -> Optional[Dict[str, Any]]:
        dreams = self._all_dreams()
        updated = None
        for dream in dreams:
            if dream["id"] == dream_id:
                dream.update(updates)
                updated = dream
        if updated is None:
            return None
        self._save(DREAMS_BUCKET, dreams)
        return updated

    def delete_dream(self, dream_id: str) -> None:
        self._save(DREAMS_BUCKET, [d for d in self._all_dreams() if d["id"] != dream_id])

    def pending_dreams(self, user_id: Optional[str] = None) -> List[Dict[str, Any]]:
        return [d for d in self.get_dreams(user_id) if d.get("pending")]

    async def flush(self, store, local_user_id: Optional[str], server_user_id: str) -> int:
        """
        Pushes pending dreams of ``local_user_id`` (anonymous when None) to the
        server store as ``server_user_id``. Local ids are replaced by server ids.
        """
        pending = self.pending_dreams(local_user_id)
        if not pending:
            return 0

        entries = [{
            "text": d["text"],
            "title": d.get("title"),
            "interpretation": d.get("interpretation"),
            "date": datetime.fromisoformat(d["date"]) if d.get("date") else None,
        } for d in pending]
        created = await store.bulk_create_dreams(server_user_id, entries)

        id_map = {local["id"]: remote for local, remote in zip(pending, created)}
        dreams = self._all_dreams()
        for dream in dreams:
            remote = id_map.get(dream["id"])
            if remote is None:
                continue
            dream["id"] = remote.id
            dream["userId"] = server_user_id
            dream["pending"] = False
        self._save(DREAMS_BUCKET, dreams)
        logger.info(f"Flushed {len(created)} local dreams to the server for user {server_user_id}")
        return len(created)

    # --- Feedback ---

    def get_feedbacks(self) -> List[Dict[str, Any]]:
        return self._load(FEEDBACK_BUCKET)

    def save_feedback(
        self,
        message: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Dict[str, Any]:
        feedback = {
            "id": str(uuid4()),
            "message": message,
            "email": email,
            "createdAt": datetime.now().isoformat(),
            "userId": user_id,
            "username": username,
        }
        self._save(FEEDBACK_BUCKET, [feedback] + self.get_feedbacks())
        return feedback

    # --- Stats ---

    def storage_stats(self, user_id: Optional[str] = None, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or datetime.now()
        dreams = self.get_dreams(user_id)
        week_ago = now - timedelta(days=7)
        total = len(dreams)
        storage_bytes = sum(
            self._bucket_file(b).stat().st_size
            for b in (DREAMS_BUCKET, USERS_BUCKET, FEEDBACK_BUCKET)
            if self._bucket_file(b).exists()
        )
        return {
            "totalDreams": total,
            "interpretedDreams": sum(1 for d in dreams if d.get("interpretation")),
            "thisWeekDreams": sum(1 for d in dreams if datetime.fromisoformat(d["date"]) >= week_ago),
            "avgDreamLength": round(sum(len(d["text"]) for d in dreams) / total) if total else 0,
            "storageBytes": storage_bytes,
            "totalUsers": len(self.get_users()),
            "totalFeedbacks": len(self.get_feedbacks()),
        }

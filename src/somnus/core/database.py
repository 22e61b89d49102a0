from datetime import datetime
from pathlib import Path
from typing import Optional, List, Any, Dict, Iterable
from uuid import uuid4

from sqlalchemy import Index, event, func, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlmodel import Field, SQLModel, select
from sqlmodel.ext.asyncio.session import AsyncSession

from somnus.core.config import SOMNUS_ROOT


class User(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    zodiac_sign: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


# Usernames are unique regardless of case.
Index("uq_user_username_lower", func.lower(User.__table__.c.username), unique=True)


class Dream(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    text: str
    title: Optional[str] = None
    interpretation: Optional[str] = None
    date: datetime = Field(default_factory=datetime.now, index=True)
    user_id: Optional[str] = Field(default=None, foreign_key="user.id", index=True)


class Feedback(SQLModel, table=True):
    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    message: str
    email: Optional[str] = None
    user_id: Optional[str] = None
    username: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.now)


# Fields a dream update may touch; anything else is ignored.
DREAM_MUTABLE_FIELDS = ("title", "interpretation")


class DuplicateUsername(Exception):
    """Another account already holds this username (case-insensitive)."""


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class DreamStore:
    """
    Owns the async engine for the journal database.

    The engine is created once per process and disposed explicitly via
    ``close()``; the HTTP app ties both ends to its lifespan.
    """

    def __init__(self, db_path: Optional[Path] = None, url: Optional[str] = None):
        if url is None:
            if db_path is None:
                db_path = SOMNUS_ROOT / "somnus.db"
            db_path.parent.mkdir(parents=True, exist_ok=True)
            url = f"sqlite+aiosqlite:///{db_path}"

        self.db_path = db_path
        self.url = url
        connect_args = {"timeout": 60} if url.startswith("sqlite") else {}
        self.engine: AsyncEngine = create_async_engine(url, echo=False, connect_args=connect_args)
        if url.startswith("sqlite"):
            # SQLite leaves foreign keys unenforced unless asked per connection
            event.listen(self.engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    async def __aenter__(self) -> "DreamStore":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def init_db(self):
        """Creates tables if they don't exist."""
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def close(self) -> None:
        await self.engine.dispose()

    # --- Users ---

    async def create_user(self, username: str, password_hash: str, zodiac_sign: Optional[str] = None) -> User:
        user = User(username=username, password_hash=password_hash, zodiac_sign=zodiac_sign)
        async with AsyncSession(self.engine) as session:
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                raise DuplicateUsername(username) from e
            await session.refresh(user)
            return user

    async def get_user(self, user_id: str) -> Optional[User]:
        async with AsyncSession(self.engine) as session:
            return await session.get(User, user_id)

    async def get_user_by_username(self, username: str) -> Optional[User]:
        """Case-insensitive lookup."""
        async with AsyncSession(self.engine) as session:
            statement = select(User).where(func.lower(User.username) == username.lower())
            result = await session.exec(statement)
            return result.first()

    async def update_user(self, user_id: str, **changes: Any) -> Optional[User]:
        async with AsyncSession(self.engine) as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            for key, value in changes.items():
                if value is not None:
                    setattr(user, key, value)
            session.add(user)
            try:
                await session.commit()
            except IntegrityError as e:
                raise DuplicateUsername(changes.get("username")) from e
            await session.refresh(user)
            return user

    async def count_users(self) -> int:
        async with AsyncSession(self.engine) as session:
            result = await session.exec(select(func.count()).select_from(User))
            return result.one()

    async def list_users_with_counts(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Users newest first, each with its dream count."""
        async with AsyncSession(self.engine) as session:
            statement = (
                select(User, func.count(Dream.id).label("dream_count"))
                .join(Dream, Dream.user_id == User.id, isouter=True)
                .group_by(User.id)
                .order_by(desc(User.created_at))
            )
            if limit is not None:
                statement = statement.limit(limit)
            result = await session.exec(statement)
            return [{"user": user, "dream_count": count} for user, count in result.all()]

    # --- Dreams ---

    async def create_dream(
        self,
        user_id: Optional[str],
        text: str,
        title: Optional[str] = None,
        interpretation: Optional[str] = None,
        date: Optional[datetime] = None,
    ) -> Dream:
        dream = Dream(text=text, title=title, interpretation=interpretation, user_id=user_id)
        if date is not None:
            dream.date = date
        async with AsyncSession(self.engine) as session:
            session.add(dream)
            await session.commit()
            await session.refresh(dream)
            return dream

    async def bulk_create_dreams(self, user_id: str, entries: Iterable[Dict[str, Any]]) -> List[Dream]:
        """Inserts every entry as a new row. No de-duplication."""
        dreams = []
        for entry in entries:
            dream = Dream(
                text=entry["text"],
                title=entry.get("title"),
                interpretation=entry.get("interpretation"),
                user_id=user_id,
            )
            if entry.get("date") is not None:
                dream.date = entry["date"]
            dreams.append(dream)

        async with AsyncSession(self.engine) as session:
            session.add_all(dreams)
            await session.commit()
            for dream in dreams:
                await session.refresh(dream)
            return dreams

    async def get_dream(self, dream_id: str) -> Optional[Dream]:
        async with AsyncSession(self.engine) as session:
            return await session.get(Dream, dream_id)

    async def list_dreams(self, user_id: str) -> List[Dream]:
        """A user's dreams, newest first."""
        async with AsyncSession(self.engine) as session:
            statement = select(Dream).where(Dream.user_id == user_id).order_by(desc(Dream.date))
            result = await session.exec(statement)
            return list(result.all())

    async def list_all_dreams(self) -> List[Dict[str, Any]]:
        """Every dream with its owner's username, newest first."""
        async with AsyncSession(self.engine) as session:
            statement = (
                select(Dream, User.username)
                .join(User, Dream.user_id == User.id, isouter=True)
                .order_by(desc(Dream.date))
            )
            result = await session.exec(statement)
            return [{"dream": dream, "username": username} for dream, username in result.all()]

    async def update_dream(self, dream_id: str, **changes: Any) -> Optional[Dream]:
        """Applies only supplied (non-None) title/interpretation changes."""
        async with AsyncSession(self.engine) as session:
            dream = await session.get(Dream, dream_id)
            if dream is None:
                return None
            for key in DREAM_MUTABLE_FIELDS:
                if changes.get(key) is not None:
                    setattr(dream, key, changes[key])
            session.add(dream)
            await session.commit()
            await session.refresh(dream)
            return dream

    async def delete_dream(self, dream_id: str) -> bool:
        async with AsyncSession(self.engine) as session:
            dream = await session.get(Dream, dream_id)
            if dream is None:
                return False
            await session.delete(dream)
            await session.commit()
            return True

    async def dream_dates(self, user_id: str) -> List[datetime]:
        async with AsyncSession(self.engine) as session:
            result = await session.exec(select(Dream.date).where(Dream.user_id == user_id))
            return list(result.all())

    async def count_dreams(self) -> int:
        async with AsyncSession(self.engine) as session:
            result = await session.exec(select(func.count()).select_from(Dream))
            return result.one()

    # --- Feedback ---

    async def create_feedback(
        self,
        message: str,
        email: Optional[str] = None,
        user_id: Optional[str] = None,
        username: Optional[str] = None,
    ) -> Feedback:
        feedback = Feedback(message=message, email=email, user_id=user_id, username=username)
        async with AsyncSession(self.engine) as session:
            session.add(feedback)
            await session.commit()
            await session.refresh(feedback)
            return feedback

    async def list_feedback(self) -> List[Feedback]:
        async with AsyncSession(self.engine) as session:
            result = await session.exec(select(Feedback).order_by(desc(Feedback.created_at)))
            return list(result.all())


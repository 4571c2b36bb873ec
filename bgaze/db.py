"""
Profile store abstraction for SQL databases and an in-memory test implementation.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, Optional, Protocol

from sqlalchemy import Column, Float, String, create_engine, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from bgaze.errors import DuplicateKey, NoChange, NotFound, UpstreamFailure, ValidationError

logger = logging.getLogger(__name__)

# Optional free-text survey answers, in their JSON (camelCase) spelling.
SURVEY_FIELDS = (
    "age",
    "genderIdentity",
    "adhdDiagnosisConfidence",
    "adhdSymptomProfile",
    "adhdMedicationStatus",
    "autismDiagnosisConfidence",
    "facialExpressionRecognition",
    "eyeContactComfort",
    "readingComprehensionChallenges",
    "readingProficiency",
    "dailyFunctionalChallenges",
    "dyslexiaDiagnosis",
    "dyslexiaManagement",
    "visualFocusPatterns",
    "geographicRegion",
)

USERNAME_TAKEN = "Username already taken"


class ProfileStore(Protocol):
    """Interface for profile persistence."""

    def create(self, profile: "ProfileRecord") -> "ProfileRecord":
        ...

    def list_all(self) -> list["ProfileRecord"]:
        ...

    def get(self, id_name: str) -> Optional["ProfileRecord"]:
        ...

    def search(self, query: str) -> list["ProfileRecord"]:
        ...

    def exists_by_email(self, email: str) -> bool:
        ...

    def count_by_email(self, email: str) -> int:
        ...

    def find_by_email(self, email: str) -> list["ProfileRecord"]:
        ...

    def rename(
        self,
        id_name: str,
        *,
        new_id_name: Optional[str] = None,
        new_email: Optional[str] = None,
    ) -> "ProfileRecord":
        ...

    def delete(self, id_name: str) -> bool:
        ...


@dataclass
class ProfileRecord:
    id_name: str
    email: Optional[str] = None
    survey: Dict[str, Optional[str]] = field(default_factory=dict)
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        payload = {"idName": self.id_name, "email": self.email}
        for name in SURVEY_FIELDS:
            payload[name] = self.survey.get(name)
        return payload


def _normalize_query(query: str) -> str:
    needle = (query or "").strip()
    if not needle:
        raise ValidationError("Query parameter 'q' is required")
    return needle.lower()


def _rename_values(
    new_id_name: Optional[str], new_email: Optional[str]
) -> dict:
    values = {}
    if new_id_name:
        values["id_name"] = new_id_name
    if new_email:
        values["email"] = new_email
    return values


class InMemoryProfileStore:
    """Simple in-memory profile store for development and tests."""

    def __init__(self):
        self.profiles: Dict[str, ProfileRecord] = {}
        # Routes run in a thread pool; check-then-write must not interleave.
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.profiles.clear()

    def create(self, profile: ProfileRecord) -> ProfileRecord:
        with self._lock:
            if profile.id_name in self.profiles:
                raise DuplicateKey()
            self.profiles[profile.id_name] = profile
        return profile

    def _snapshot(self) -> list[ProfileRecord]:
        with self._lock:
            return list(self.profiles.values())

    def list_all(self) -> list[ProfileRecord]:
        return self._snapshot()

    def get(self, id_name: str) -> Optional[ProfileRecord]:
        return self.profiles.get(id_name)

    def search(self, query: str) -> list[ProfileRecord]:
        needle = _normalize_query(query)
        return [
            profile
            for profile in self._snapshot()
            if needle in profile.id_name.lower()
            or (profile.email and needle in profile.email.lower())
        ]

    def exists_by_email(self, email: str) -> bool:
        return any(p.email == email for p in self._snapshot())

    def count_by_email(self, email: str) -> int:
        return sum(1 for p in self._snapshot() if p.email == email)

    def find_by_email(self, email: str) -> list[ProfileRecord]:
        return [p for p in self._snapshot() if p.email == email]

    def rename(
        self,
        id_name: str,
        *,
        new_id_name: Optional[str] = None,
        new_email: Optional[str] = None,
    ) -> ProfileRecord:
        values = _rename_values(new_id_name, new_email)
        with self._lock:
            profile = self.profiles.get(id_name)
            if profile is None:
                raise NotFound("User not found.")
            if not values:
                raise NoChange()
            target = values.get("id_name", id_name)
            if target != id_name and target in self.profiles:
                raise DuplicateKey(USERNAME_TAKEN)
            if "email" in values:
                profile.email = values["email"]
            if target != id_name:
                del self.profiles[id_name]
                profile.id_name = target
                self.profiles[target] = profile
        return profile

    def delete(self, id_name: str) -> bool:
        with self._lock:
            return self.profiles.pop(id_name, None) is not None


class SqlProfileStore:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlProfileStore")
        engine_kwargs = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # One shared connection, otherwise each thread sees an empty database.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @contextmanager
    def _session_scope(
        self, action: str, duplicate_message: Optional[str] = None
    ) -> Iterator[Session]:
        session = self.Session()
        try:
            yield session
        except IntegrityError as exc:
            session.rollback()
            raise DuplicateKey(duplicate_message) from exc
        except SQLAlchemyError as exc:
            session.rollback()
            logger.exception("Profile store failed to %s", action)
            raise UpstreamFailure(f"Failed to {action}") from exc
        finally:
            session.close()

    def _to_record(self, row: "ProfileRow") -> ProfileRecord:
        return ProfileRecord(
            id_name=row.id_name,
            email=row.email,
            survey={name: getattr(row, attr) for name, attr in SURVEY_COLUMNS.items()},
            created_at=row.created_at,
        )

    def create(self, profile: ProfileRecord) -> ProfileRecord:
        with self._session_scope("save profile") as session:
            row = ProfileRow(
                id=uuid.uuid4().hex,
                id_name=profile.id_name,
                email=profile.email,
                created_at=profile.created_at,
            )
            for name, attr in SURVEY_COLUMNS.items():
                setattr(row, attr, profile.survey.get(name))
            session.add(row)
            session.commit()
            return self._to_record(row)

    def list_all(self) -> list[ProfileRecord]:
        with self._session_scope("fetch surveys") as session:
            rows = session.execute(
                select(ProfileRow).order_by(ProfileRow.created_at.asc())
            ).scalars()
            return [self._to_record(row) for row in rows]

    def get(self, id_name: str) -> Optional[ProfileRecord]:
        with self._session_scope("fetch user profile") as session:
            row = session.execute(
                select(ProfileRow).where(ProfileRow.id_name == id_name)
            ).scalar_one_or_none()
            return self._to_record(row) if row else None

    def search(self, query: str) -> list[ProfileRecord]:
        needle = _normalize_query(query)
        with self._session_scope("search surveys") as session:
            stmt = (
                select(ProfileRow)
                .where(
                    or_(
                        ProfileRow.id_name.icontains(needle, autoescape=True),
                        ProfileRow.email.icontains(needle, autoescape=True),
                    )
                )
                .order_by(ProfileRow.created_at.asc())
            )
            return [self._to_record(row) for row in session.execute(stmt).scalars()]

    def exists_by_email(self, email: str) -> bool:
        with self._session_scope("check profile email") as session:
            stmt = select(ProfileRow.id).where(ProfileRow.email == email).limit(1)
            return session.execute(stmt).first() is not None

    def count_by_email(self, email: str) -> int:
        with self._session_scope("count profiles") as session:
            stmt = (
                select(func.count())
                .select_from(ProfileRow)
                .where(ProfileRow.email == email)
            )
            return session.execute(stmt).scalar_one()

    def find_by_email(self, email: str) -> list[ProfileRecord]:
        with self._session_scope("fetch profiles") as session:
            stmt = (
                select(ProfileRow)
                .where(ProfileRow.email == email)
                .order_by(ProfileRow.created_at.asc())
            )
            return [self._to_record(row) for row in session.execute(stmt).scalars()]

    def rename(
        self,
        id_name: str,
        *,
        new_id_name: Optional[str] = None,
        new_email: Optional[str] = None,
    ) -> ProfileRecord:
        values = _rename_values(new_id_name, new_email)
        target = values.get("id_name", id_name)
        with self._session_scope("update user profile", USERNAME_TAKEN) as session:
            if not values:
                if self._exists(session, id_name):
                    raise NoChange()
                raise NotFound("User not found.")
            # Conditional single-statement update; the unique index on id_name
            # rejects a concurrent claim of the target name.
            result = session.execute(
                update(ProfileRow)
                .where(ProfileRow.id_name == id_name)
                .values(**values)
            )
            if result.rowcount == 0:
                session.rollback()
                raise NotFound("User not found.")
            session.commit()
            row = session.execute(
                select(ProfileRow).where(ProfileRow.id_name == target)
            ).scalar_one()
            return self._to_record(row)

    def delete(self, id_name: str) -> bool:
        with self._session_scope("delete user profile") as session:
            result = session.execute(
                ProfileRow.__table__.delete().where(ProfileRow.id_name == id_name)
            )
            session.commit()
            return result.rowcount > 0

    @staticmethod
    def _exists(session: Session, id_name: str) -> bool:
        stmt = select(ProfileRow.id).where(ProfileRow.id_name == id_name).limit(1)
        return session.execute(stmt).first() is not None


Base = declarative_base()


class ProfileRow(Base):
    __tablename__ = "user_profiles"

    id = Column(String, primary_key=True)
    id_name = Column(String, nullable=False, unique=True)
    email = Column(String, nullable=True, index=True)
    age = Column(String, nullable=True)
    gender_identity = Column(String, nullable=True)
    adhd_diagnosis_confidence = Column(String, nullable=True)
    adhd_symptom_profile = Column(String, nullable=True)
    adhd_medication_status = Column(String, nullable=True)
    autism_diagnosis_confidence = Column(String, nullable=True)
    facial_expression_recognition = Column(String, nullable=True)
    eye_contact_comfort = Column(String, nullable=True)
    reading_comprehension_challenges = Column(String, nullable=True)
    reading_proficiency = Column(String, nullable=True)
    daily_functional_challenges = Column(String, nullable=True)
    dyslexia_diagnosis = Column(String, nullable=True)
    dyslexia_management = Column(String, nullable=True)
    visual_focus_patterns = Column(String, nullable=True)
    geographic_region = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


SURVEY_COLUMNS = {
    "age": "age",
    "genderIdentity": "gender_identity",
    "adhdDiagnosisConfidence": "adhd_diagnosis_confidence",
    "adhdSymptomProfile": "adhd_symptom_profile",
    "adhdMedicationStatus": "adhd_medication_status",
    "autismDiagnosisConfidence": "autism_diagnosis_confidence",
    "facialExpressionRecognition": "facial_expression_recognition",
    "eyeContactComfort": "eye_contact_comfort",
    "readingComprehensionChallenges": "reading_comprehension_challenges",
    "readingProficiency": "reading_proficiency",
    "dailyFunctionalChallenges": "daily_functional_challenges",
    "dyslexiaDiagnosis": "dyslexia_diagnosis",
    "dyslexiaManagement": "dyslexia_management",
    "visualFocusPatterns": "visual_focus_patterns",
    "geographicRegion": "geographic_region",
}

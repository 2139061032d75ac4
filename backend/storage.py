# backend/storage.py
"""Ordered persistence backends for form submissions.

Each submission is offered to the relational table first, then to the JSON
file, then dropped. The first backend that accepts it wins; a record is
never written to two stores.
"""
import json
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from errors import StoreUnavailable
from models import FormSubmission, SubmissionRecord

log = logging.getLogger(__name__)

RELATIONAL = "relational"
FILE = "file"
DISCARD = "discard"


@dataclass(frozen=True)
class StoreOutcome:
    backend: str
    committed: bool
    record_id: Optional[int] = None
    error: Optional[str] = None


class Backend(ABC):
    name = "backend"

    def save(self, record: SubmissionRecord) -> StoreOutcome:
        try:
            record_id = self._write(record)
        except StoreUnavailable as e:
            return StoreOutcome(self.name, committed=False, error=e.reason)
        return StoreOutcome(self.name, committed=True, record_id=record_id)

    @abstractmethod
    def _write(self, record: SubmissionRecord) -> Optional[int]:
        """Persist ``record``; raise StoreUnavailable on failure."""


class RelationalStore(Backend):
    """Insert into form_submissions through the Flask-SQLAlchemy session.

    ``database`` is None when the app has no DATABASE_URL; every save then
    reports the store as unavailable. Must be used inside an app context.
    """

    name = RELATIONAL

    def __init__(self, database=None):
        self.database = database

    def _write(self, record):
        if self.database is None:
            raise StoreUnavailable(self.name, "No database connection")
        session = self.database.session
        try:
            row = FormSubmission(**record.to_row())
            session.add(row)
            session.flush()
            row_id = row.id
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StoreUnavailable(self.name, str(e)) from e
        return row_id

    def recent(self, limit: int = 500) -> List[FormSubmission]:
        if self.database is None:
            raise StoreUnavailable(self.name, "No database connection")
        try:
            return (
                FormSubmission.query.order_by(
                    FormSubmission.created_at.desc(), FormSubmission.id.desc()
                )
                .limit(limit)
                .all()
            )
        except SQLAlchemyError as e:
            self.database.session.rollback()
            raise StoreUnavailable(self.name, str(e)) from e


class FileStore(Backend):
    """Append submissions to a single JSON array on disk.

    The read-modify-write runs under one lock per store, and the new array
    is written to a sibling temp file before replacing the original.
    """

    name = FILE

    def __init__(self, path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _write(self, record):
        entry = record.to_document()
        with self._lock:
            submissions = self._load()
            submissions.append(entry)
            self._dump(submissions)
        return None

    def entries(self) -> list:
        with self._lock:
            return self._load()

    def _load(self) -> list:
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return []
        except (OSError, ValueError) as e:
            raise StoreUnavailable(self.name, f"cannot read {self.path}: {e}") from e
        if not isinstance(data, list):
            # Leave the file alone rather than replace someone's data.
            raise StoreUnavailable(self.name, f"{self.path} does not hold a JSON array")
        return data

    def _dump(self, submissions: list) -> None:
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with open(tmp, "w", encoding="utf-8") as f:
                json.dump(submissions, f, indent=2, ensure_ascii=False)
            os.replace(tmp, self.path)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise StoreUnavailable(self.name, f"cannot write {self.path}: {e}") from e


class Discard(Backend):
    name = DISCARD

    def _write(self, record):
        log.error(
            "All stores failed; dropping %s submission (email=%s phone=%s)",
            record.form_type, record.email, record.phone,
        )
        return None


class FallbackChain:
    """Try each backend in order until one commits. Always ends with Discard."""

    def __init__(self, backends: Iterable[Backend]):
        self.backends = list(backends)
        if not self.backends or not isinstance(self.backends[-1], Discard):
            self.backends.append(Discard())

    def save(self, record: SubmissionRecord) -> StoreOutcome:
        outcome = None
        for backend in self.backends:
            outcome = backend.save(record)
            if outcome.committed:
                return outcome
            log.warning("%s insert failed, falling back: %s", backend.name, outcome.error)
        return outcome

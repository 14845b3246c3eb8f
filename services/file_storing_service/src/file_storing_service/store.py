from __future__ import annotations

import io
import logging
import os
import uuid
from pathlib import Path, PurePath
from typing import BinaryIO

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from antiplagiarism_common.errors import NotFoundError, StorageError, ValidationError
from antiplagiarism_common.validation import parse_positive_int

from .models import Work
from .storage import safe_file_name, write_stream

logger = logging.getLogger(__name__)


class SubmissionStore:
    """Submissions: metadata rows in the database, content under ``files_dir``.

    Content is streamed to a staging file first, so the database transaction
    only covers the insert and the rename to ``<id>_<name>``. A row is committed
    only after its file is in place, and the file is removed again when the
    commit fails, so neither side is ever orphaned.
    """

    def __init__(self, session_factory: sessionmaker[Session], files_dir: str):
        self._session_factory = session_factory
        self._files_dir = Path(files_dir)

    @property
    def files_dir(self) -> Path:
        return self._files_dir

    def create(
        self,
        student_id: int | str | None,
        assignment_id: int | str | None,
        content: bytes | BinaryIO | None,
        file_name: str | None,
        content_type: str | None = None,
    ) -> Work:
        student_id = parse_positive_int("studentId", student_id)
        assignment_id = parse_positive_int("assignmentId", assignment_id)
        if content is None:
            raise ValidationError("Field 'file' is required")
        if not file_name or not file_name.strip():
            raise ValidationError("Uploaded file must have a name")
        if isinstance(content, (bytes, bytearray)):
            content = io.BytesIO(content)

        display_name = PurePath((file_name or "").replace("\\", "/")).name or "file.bin"

        # content goes to disk before any transaction is opened
        staging = self._files_dir / f".upload-{uuid.uuid4().hex}.part"
        try:
            size, sha256 = write_stream(content, staging)
        except OSError as e:
            _discard(staging)
            logger.error("Failed to write %s: %s", staging, e)
            raise StorageError(f"Failed to store file: {e.strerror or e.__class__.__name__}") from e

        if size == 0:
            _discard(staging)
            raise ValidationError("Field 'file' must not be empty")

        with self._session_factory() as db:
            work = Work(
                student_id=student_id,
                assignment_id=assignment_id,
                file_name=display_name,
                file_size=size,
                sha256=sha256,
                content_type=content_type or "application/octet-stream",
            )
            db.add(work)
            destination = None
            try:
                db.flush()
                destination = self._files_dir / safe_file_name(file_name, work.id)
                work.file_path = str(destination)
                os.replace(staging, destination)
                db.commit()
            except (SQLAlchemyError, OSError) as e:
                db.rollback()
                _discard(staging)
                if destination is not None:
                    _discard(destination)
                logger.error("Failed to register upload %s: %s", staging.name, e)
                raise StorageError(f"Failed to save submission: {e.__class__.__name__}") from e

            logger.info(
                "Stored work %s (student %s, assignment %s, %s bytes)",
                work.id, student_id, assignment_id, size,
            )
            return work

    def get_by_id(self, work_id: int) -> Work:
        with self._session_factory() as db:
            work = db.get(Work, work_id)
        if work is None:
            raise NotFoundError(f"Work with id '{work_id}' not found")
        return work

    def list_by_assignment(self, assignment_id: int) -> list[Work]:
        with self._session_factory() as db:
            rows = db.execute(
                select(Work)
                .where(Work.assignment_id == assignment_id)
                .order_by(Work.submitted_at.asc(), Work.id.asc())
            ).scalars().all()
        return list(rows)

    def count(self) -> int:
        with self._session_factory() as db:
            return db.execute(select(func.count()).select_from(Work)).scalar_one()


def _discard(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not remove %s: %s", path, e)

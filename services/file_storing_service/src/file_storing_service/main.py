import logging
from pathlib import Path

from fastapi import Depends, FastAPI, File, Form, UploadFile
from fastapi.responses import FileResponse

from antiplagiarism_common.correlation import install_correlation_middleware
from antiplagiarism_common.errors import AccessDeniedError, GoneError
from antiplagiarism_common.handlers import install_error_handlers
from antiplagiarism_common.logging_config import configure_logging
from antiplagiarism_common.schemas import WorkMeta

from .config import settings
from .db import SessionLocal, init_db
from .models import Work
from .storage import is_path_safe, is_text_file, storage_usage
from .store import SubmissionStore

logger = logging.getLogger(__name__)

app = FastAPI(title="File Storing Service", version="1.0.0")
install_correlation_middleware(app)
install_error_handlers(app)

_store = SubmissionStore(SessionLocal, settings.files_dir)


def get_store() -> SubmissionStore:
    return _store


@app.on_event("startup")
def _startup():
    configure_logging(settings.log_level)
    Path(settings.files_dir).mkdir(parents=True, exist_ok=True)
    init_db()


@app.get("/health")
def health(store: SubmissionStore = Depends(get_store)):
    exists, files_on_disk, bytes_on_disk = storage_usage(str(store.files_dir))
    return {
        "status": "ok",
        "service": "file-storing-service",
        "metrics": {
            "works": store.count(),
            "storageExists": exists,
            "filesOnDisk": files_on_disk,
            "totalStorageSize": bytes_on_disk,
        },
    }


def _work_meta(w: Work) -> WorkMeta:
    return WorkMeta(
        work_id=w.id,
        student_id=w.student_id,
        assignment_id=w.assignment_id,
        submitted_at=w.submitted_at,
        file_name=w.file_name,
        file_path=w.file_path,
        file_size=w.file_size,
        content_type=w.content_type,
        sha256=w.sha256,
        download_url=f"/files/{w.id}/download",
    )


@app.post("/files", response_model=WorkMeta)
def upload_file(
    student_id: str | None = Form(None, alias="studentId"),
    assignment_id: str | None = Form(None, alias="assignmentId"),
    file: UploadFile | None = File(None),
    store: SubmissionStore = Depends(get_store),
):
    work = store.create(
        student_id,
        assignment_id,
        file.file if file is not None else None,
        file.filename if file is not None else None,
        file.content_type if file is not None else None,
    )
    return _work_meta(work)


@app.get("/files/{work_id}/meta", response_model=WorkMeta)
def get_work_meta(work_id: int, store: SubmissionStore = Depends(get_store)):
    return _work_meta(store.get_by_id(work_id))


@app.get("/files/{work_id}/download")
def download(work_id: int, inline: bool = False, store: SubmissionStore = Depends(get_store)):
    work = store.get_by_id(work_id)
    if not is_path_safe(work.file_path, str(store.files_dir)):
        logger.warning("Refusing to serve %s: outside storage root", work.file_path)
        raise AccessDeniedError("Access to the requested file is forbidden")
    path = Path(work.file_path)
    if not path.is_file():
        raise GoneError(f"File '{work.file_name}' has been deleted or moved")

    disposition = "inline" if inline and is_text_file(work.file_name) else "attachment"
    return FileResponse(
        path=str(path),
        media_type=work.content_type,
        filename=work.file_name,
        content_disposition_type=disposition,
        headers={"X-Work-Id": str(work.id)},
    )


@app.get("/assignments/{assignment_id}/files", response_model=list[WorkMeta])
def list_assignment_files(assignment_id: int, store: SubmissionStore = Depends(get_store)):
    return [_work_meta(w) for w in store.list_by_assignment(assignment_id)]


def run() -> None:
    import uvicorn

    uvicorn.run("file_storing_service.main:app", host="0.0.0.0", port=settings.port)

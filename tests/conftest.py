import os
import tempfile

# settings are read at import time, so point every service at a scratch dir first
_DATA_DIR = tempfile.mkdtemp(prefix="antiplagiarism-tests-")
os.environ.setdefault("DATA_DIR", _DATA_DIR)
os.environ.setdefault("FILES_DIR", os.path.join(_DATA_DIR, "files"))
os.environ.setdefault("METADATA_RETRY_BASE_DELAY_SECONDS", "0")

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from file_analysis_service.db import Base as AnalysisBase  # noqa: E402
from file_analysis_service.store import ReportStore  # noqa: E402
from file_storing_service.db import Base as StoringBase  # noqa: E402
from file_storing_service.store import SubmissionStore  # noqa: E402


def _session_factory(url: str, base):
    engine = create_engine(url, connect_args={"check_same_thread": False})
    base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def storing_sessions(tmp_path):
    return _session_factory(f"sqlite:///{tmp_path}/file_storing.db", StoringBase)


@pytest.fixture()
def submission_store(tmp_path, storing_sessions) -> SubmissionStore:
    return SubmissionStore(storing_sessions, str(tmp_path / "files"))


@pytest.fixture()
def analysis_sessions(tmp_path):
    return _session_factory(f"sqlite:///{tmp_path}/file_analysis.db", AnalysisBase)


@pytest.fixture()
def report_store(analysis_sessions) -> ReportStore:
    return ReportStore(analysis_sessions)

"""
Pytest configuration and fixtures for School Inspection Backend tests.
"""

import asyncio
import os
import shutil
import tempfile
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

# Set test environment variables before importing the app
_DATA_DIR = tempfile.mkdtemp(prefix="inspection_test_data_")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{Path(_DATA_DIR) / 'inspections.db'}"
os.environ["S3_BUCKET_NAME"] = "test-bucket"

from school_inspection_backend.blob_service import BlobUploader
from school_inspection_backend.configuration import BlobSettings
from school_inspection_backend.database import validate_document
from school_inspection_backend.main import app, get_inspection_store, get_submission_handler
from school_inspection_backend.models import InspectionRecord, UserRecord
from school_inspection_backend.submission_handler import SubmissionHandler, TimeoutGuard

REGISTERED_UDISE_CODE = "1234567"
BLOB_BASE_URL = "https://blob.test/inspections"


class StubS3Client:
    """Records put_object calls; fails for keys containing ``fail_marker``."""

    def __init__(self, fail_marker=None, delay=0.0):
        self.fail_marker = fail_marker
        self.delay = delay
        self.calls = []

    def put_object(self, **kwargs):
        if self.delay:
            time.sleep(self.delay)
        if self.fail_marker and self.fail_marker in kwargs["Key"]:
            raise ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, "PutObject")
        self.calls.append(kwargs)

    def url_for(self, call):
        return f"{BLOB_BASE_URL}/{call['Key']}"


class FakeUserRegistry:
    def __init__(self, udise_codes=(REGISTERED_UDISE_CODE,)):
        self.udise_codes = set(udise_codes)
        self.lookups = []

    async def find_by_udise_code(self, udise_code):
        self.lookups.append(udise_code)
        if udise_code not in self.udise_codes:
            return None
        return UserRecord(id=f"user-{udise_code}", udise_code=udise_code, created_at=datetime.now(timezone.utc))


class FakeInspectionStore:
    def __init__(self, delay=0.0):
        self.delay = delay
        self.records = []

    async def create(self, document):
        validated = validate_document(document)
        if self.delay:
            await asyncio.sleep(self.delay)
        now = datetime.now(timezone.utc)
        record = InspectionRecord(
            id=f"inspection-{len(self.records) + 1}",
            created_at=now,
            updated_at=now,
            **validated.model_dump(),
        )
        self.records.append(record)
        return record

    async def get(self, inspection_id):
        return next((record for record in self.records if record.id == inspection_id), None)


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the temporary data directory after all tests."""
    yield {"data": _DATA_DIR}
    shutil.rmtree(_DATA_DIR, ignore_errors=True)


@pytest.fixture
def s3_client():
    return StubS3Client()


@pytest.fixture
def blob_settings():
    return BlobSettings(bucket="test-bucket", public_base_url=BLOB_BASE_URL)


@pytest.fixture
def uploader(blob_settings, s3_client):
    return BlobUploader(blob_settings, client=s3_client)


@pytest.fixture
def registry():
    return FakeUserRegistry()


@pytest.fixture
def store():
    return FakeInspectionStore()


@pytest.fixture
def make_handler(registry, store, uploader):
    """Build a handler from the fake collaborators, overriding any of them."""

    def _make(**overrides):
        options = {
            "authorization_store": registry,
            "document_store": store,
            "uploader": uploader,
            "guard": TimeoutGuard(5.0),
        }
        options.update(overrides)
        return SubmissionHandler(**options)

    return _make


@pytest.fixture
def handler(make_handler):
    return make_handler()


@pytest.fixture
def client(handler, store):
    """Create a test client whose handler uses the fake collaborators."""
    app.dependency_overrides[get_submission_handler] = lambda: handler
    app.dependency_overrides[get_inspection_store] = lambda: store
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def school_fields():
    """Scalar form fields of a complete submission."""
    return {
        "schoolName": "GPS Rampur",
        "state": "Uttar Pradesh",
        "district": "Lucknow",
        "block": "Mohanlalganj",
        "udiseCode": REGISTERED_UDISE_CODE,
    }

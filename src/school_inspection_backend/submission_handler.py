"""
Request pipeline for school inspection submissions.

A submission flows through:
1. Field extraction from the multipart form
2. UDISE code validation
3. Authorization lookup in the user registry
4. Board document upload
5. Room discovery and concurrent upload of each room's photographs
6. Persistence of the inspection record
7. Assembly of a ``SubmissionResult``

The whole pipeline runs under a ``TimeoutGuard``. Failures are caught only at
the outer boundary of ``SubmissionHandler.handle`` and turned into tagged
results; nothing is retried and a failed upload aborts the entire submission.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Dict, List, Optional, Protocol, TypeVar

from starlette.datastructures import FormData, UploadFile
from starlette.exceptions import HTTPException

from .errors import FailureKind, SubmissionFailure
from .models import ROOM_SURFACES, InspectionRecord, SubmissionResult, UserRecord
from .utils import is_valid_udise_code

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCALAR_FIELDS = {
    "school_name": "schoolName",
    "state": "state",
    "district": "district",
    "block": "block",
    "udise_code": "udiseCode",
}


class AuthorizationStore(Protocol):
    async def find_by_udise_code(self, udise_code: str) -> Optional[UserRecord]: ...


class DocumentStore(Protocol):
    async def create(self, document: Dict[str, Any]) -> InspectionRecord: ...


class Uploader(Protocol):
    async def upload(self, data: bytes, original_name: Optional[str]) -> str: ...


class FormSource(Protocol):
    async def form(self, *, max_files: int = ..., max_fields: int = ...) -> FormData: ...


class TimeoutGuard:
    """Bounds the wall time of an awaitable, cancelling it on expiry."""

    def __init__(self, seconds: float) -> None:
        self.seconds = seconds

    async def run(self, awaitable: Awaitable[T]) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.seconds)
        except asyncio.TimeoutError as exc:
            logger.warning(f"Submission exceeded its {self.seconds}s budget and was abandoned")
            raise SubmissionFailure(FailureKind.TIMEOUT) from exc


def _text_value(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def extract_fields(form: FormData) -> Dict[str, Optional[str]]:
    """Pull the scalar fields out of the form; absent or non-text fields become ``None``."""
    return {name: _text_value(form.get(key)) for name, key in SCALAR_FIELDS.items()}


def extract_board_file(form: FormData) -> Optional[UploadFile]:
    value = form.get("boardFile")
    return value if isinstance(value, UploadFile) else None


def room_field_name(index: int, surface: str) -> str:
    return f"rooms[{index}][{surface}]"


def collect_room_files(form: FormData, index: int) -> Dict[str, List[UploadFile]]:
    """
    Gather every file submitted for one room index, keyed by surface.

    Every known surface gets an entry, empty when nothing was submitted for it.
    Text values posted under a file key are ignored.
    """
    return {
        surface: [item for item in form.getlist(room_field_name(index, surface)) if isinstance(item, UploadFile)]
        for surface in ROOM_SURFACES
    }


class SubmissionHandler:
    """
    Processes one inspection submission per call.

    Attributes:
        authorization_store: Registry queried for the submitting UDISE code
        document_store: Store the finished inspection is written to
        uploader: Blob uploader returning a URL per file
        guard: Timeout applied to the whole pipeline
        max_form_files: Upper bound on file parts accepted in one form
    """

    def __init__(
        self,
        authorization_store: AuthorizationStore,
        document_store: DocumentStore,
        uploader: Uploader,
        guard: TimeoutGuard,
        max_form_files: int = 1000,
    ) -> None:
        self.authorization_store = authorization_store
        self.document_store = document_store
        self.uploader = uploader
        self.guard = guard
        self.max_form_files = max_form_files

    async def handle(self, request: FormSource) -> SubmissionResult:
        """
        Run the pipeline for a request and return its result.

        This is the only place failures are caught. Classified failures keep
        their kind; anything else is logged and reported as an internal error.
        """
        try:
            record = await self.guard.run(self._process(request))
        except SubmissionFailure as failure:
            logger.warning(f"Submission rejected ({failure.kind.value}): {failure.message}")
            return SubmissionResult.failed(failure.kind, failure.message)
        except Exception:
            logger.exception("Unexpected error while processing inspection submission")
            return SubmissionResult.failed(FailureKind.INTERNAL_ERROR)
        return SubmissionResult.created(record)

    async def _process(self, request: FormSource) -> InspectionRecord:
        try:
            form = await request.form(max_files=self.max_form_files)
        except HTTPException as exc:
            raise SubmissionFailure(FailureKind.VALIDATION_FAILED, f"Validation failed: {exc.detail}") from exc
        try:
            return await self._process_form(form)
        finally:
            await form.close()

    async def _process_form(self, form: FormData) -> InspectionRecord:
        fields = extract_fields(form)
        board_file = extract_board_file(form)

        udise_code = fields["udise_code"]
        if not is_valid_udise_code(udise_code):
            raise SubmissionFailure(FailureKind.INVALID_IDENTIFIER)

        user = await self.authorization_store.find_by_udise_code(udise_code)
        if user is None:
            raise SubmissionFailure(FailureKind.UNAUTHORIZED_IDENTIFIER)

        board_file_url = None
        if board_file is not None:
            board_file_url = await self._upload_file(board_file)

        rooms = []
        room_index = 0
        while True:
            room_files = collect_room_files(form, room_index)
            # The first index that contributes no file ends the scan, even if later indices have files.
            if not any(room_files.values()):
                break
            rooms.append(await self._upload_room(room_files))
            room_index += 1

        return await self.document_store.create(
            {
                **fields,
                "board_file": board_file_url,
                "rooms": rooms,
            }
        )

    async def _upload_file(self, file: UploadFile) -> str:
        data = await file.read()
        return await self.uploader.upload(data, file.filename)

    async def _upload_room(self, room_files: Dict[str, List[UploadFile]]) -> Dict[str, List[str]]:
        """
        Upload every file of every surface of one room concurrently.

        The first failure cancels the uploads still in flight before it is re-raised.
        """
        surfaces = []
        uploads = []
        for surface, files in room_files.items():
            for file in files:
                surfaces.append(surface)
                uploads.append(asyncio.ensure_future(self._upload_file(file)))

        try:
            urls = await asyncio.gather(*uploads)
        except BaseException:
            for upload in uploads:
                upload.cancel()
            await asyncio.gather(*uploads, return_exceptions=True)
            raise

        room: Dict[str, List[str]] = {surface: [] for surface in room_files}
        for surface, url in zip(surfaces, urls):
            room[surface].append(url)
        return room

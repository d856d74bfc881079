"""
Tests for the submission pipeline helpers and the timeout guard.
"""

import asyncio
from io import BytesIO

import pytest
from starlette.datastructures import FormData, UploadFile

from school_inspection_backend.errors import FailureKind, SubmissionFailure
from school_inspection_backend.models import ROOM_SURFACES
from school_inspection_backend.submission_handler import (
    TimeoutGuard,
    collect_room_files,
    extract_board_file,
    extract_fields,
)


def upload(name, content=b"jpeg"):
    return UploadFile(file=BytesIO(content), filename=name)


class StaticForm:
    """Stands in for a request whose form has already been parsed."""

    def __init__(self, items):
        self._form = FormData(items)

    async def form(self, **kwargs):
        return self._form


class SlowUploader:
    """Fails uploads named ``broken*`` at once and holds every other upload open."""

    def __init__(self):
        self.cancelled = []

    async def upload(self, data, original_name):
        if original_name.startswith("broken"):
            raise SubmissionFailure(FailureKind.UPLOAD_FAILED)
        try:
            await asyncio.sleep(5)
        except asyncio.CancelledError:
            self.cancelled.append(original_name)
            raise
        return f"https://blob.test/{original_name}"


def school_form(*files):
    return StaticForm(
        [
            ("schoolName", "GPS Rampur"),
            ("state", "Uttar Pradesh"),
            ("district", "Lucknow"),
            ("block", "Mohanlalganj"),
            ("udiseCode", "1234567"),
            *files,
        ]
    )


class TestExtractFields:
    def test_missing_fields_become_none(self):
        fields = extract_fields(FormData([("udiseCode", "1234567"), ("state", "Bihar")]))
        assert fields == {
            "school_name": None,
            "state": "Bihar",
            "district": None,
            "block": None,
            "udise_code": "1234567",
        }

    def test_file_under_scalar_name_is_not_text(self):
        fields = extract_fields(FormData([("schoolName", upload("name.txt"))]))
        assert fields["school_name"] is None

    def test_board_file_must_be_a_file(self):
        assert extract_board_file(FormData([("boardFile", "not-a-file")])) is None
        board = upload("board.pdf")
        assert extract_board_file(FormData([("boardFile", board)])) is board


class TestCollectRoomFiles:
    def test_every_surface_has_an_entry(self):
        front = upload("front.jpg")
        files = collect_room_files(FormData([("rooms[0][interiorFrontWall]", front)]), 0)

        assert list(files) == list(ROOM_SURFACES)
        assert files["interiorFrontWall"] == [front]
        assert all(files[surface] == [] for surface in ROOM_SURFACES if surface != "interiorFrontWall")

    def test_only_the_requested_index_is_read(self):
        form = FormData([("rooms[1][roof]", upload("roof.jpg"))])
        assert not any(collect_room_files(form, 0).values())
        assert len(collect_room_files(form, 1)["roof"]) == 1

    def test_text_values_are_ignored(self):
        form = FormData([("rooms[0][roof]", ""), ("rooms[0][roof]", upload("roof.jpg"))])
        assert [file.filename for file in collect_room_files(form, 0)["roof"]] == ["roof.jpg"]


class TestTimeoutGuard:
    def test_returns_result_within_budget(self):
        async def quick():
            return "done"

        assert asyncio.run(TimeoutGuard(1.0).run(quick())) == "done"

    def test_expiry_raises_timeout_failure_and_cancels(self):
        cancelled = []

        async def slow():
            try:
                await asyncio.sleep(5)
            except asyncio.CancelledError:
                cancelled.append(True)
                raise

        with pytest.raises(SubmissionFailure) as excinfo:
            asyncio.run(TimeoutGuard(0.05).run(slow()))

        assert excinfo.value.kind is FailureKind.TIMEOUT
        assert excinfo.value.status_code == 408
        assert cancelled == [True]


class TestSubmissionHandler:
    def test_room_discovery_stops_at_first_empty_index(self, handler, store):
        form = StaticForm(
            [
                ("schoolName", "GPS Rampur"),
                ("state", "Uttar Pradesh"),
                ("district", "Lucknow"),
                ("block", "Mohanlalganj"),
                ("udiseCode", "1234567"),
                ("rooms[0][roof]", upload("r0.jpg")),
                ("rooms[1][interiorCeiling]", upload("r1.jpg")),
                ("rooms[3][roof]", upload("r3.jpg")),
            ]
        )
        result = asyncio.run(handler.handle(form))

        assert result.success is True
        assert result.status_code == 201
        assert len(result.data.rooms) == 2
        assert store.records == [result.data]

    def test_failed_upload_cancels_the_rest_of_the_room(self, make_handler, store):
        uploader = SlowUploader()
        handler = make_handler(uploader=uploader)
        form = school_form(
            ("rooms[0][interiorFloor]", upload("floor.jpg")),
            ("rooms[0][roof]", upload("broken-roof.jpg")),
            ("rooms[0][roof]", upload("roof.jpg")),
        )

        result = asyncio.run(handler.handle(form))

        assert result.success is False
        assert result.status_code == 500
        assert sorted(uploader.cancelled) == ["floor.jpg", "roof.jpg"]
        assert store.records == []

    def test_failure_result_carries_kind(self, handler, registry):
        result = asyncio.run(handler.handle(StaticForm([("udiseCode", "12")])))

        assert result.success is False
        assert result.failure is FailureKind.INVALID_IDENTIFIER
        assert result.to_response() == {"success": False, "error": "Invalid UDISE Code"}
        assert registry.lookups == []

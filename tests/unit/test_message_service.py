import pytest
import pytest_asyncio

from app.core.errors import (
    AuthorizationException,
    FileTooLargeException,
    FileTypeNotAllowedException,
    NotInRoomException,
    ResourceNotFoundException,
    ValidationException,
)
from app.core.config import settings
from app.schemas.message import FileDescriptor, MessageResponse
from app.services import file_service, message_service, participant_service


def _stored_file(room_id: str, size: int = 100, stored_name: str = "abc.png") -> FileDescriptor:
    """업로드 디렉토리에 실제 파일을 만들고 그 파일 정보를 반환"""
    directory = file_service.ensure_upload_directories(room_id)
    (directory / stored_name).write_bytes(b"x" * size)
    return FileDescriptor(
        stored_name=stored_name,
        original_name="cat.png",
        path=file_service.public_path(room_id, stored_name),
        size=size,
        mime_type="image/png"
    )


@pytest_asyncio.fixture
async def alice(test_session, test_room):
    return await participant_service.reserve_slot(test_session, test_room.id, "alice", "10.0.0.1")


@pytest_asyncio.fixture
async def bob(test_session, test_room):
    return await participant_service.reserve_slot(test_session, test_room.id, "bob", "10.0.0.2")


class TestSendMessage:
    """메시지 전송 테스트"""

    @pytest.mark.asyncio
    async def test_send_text_message(self, test_session, test_room, alice):
        message = await message_service.send_message(test_session, alice.id, test_room.id, "text", "hello")

        assert message.id is not None
        assert message.room_id == test_room.id
        assert message.sender_id == alice.id
        assert message.sender_nickname == "alice"
        assert message.kind == "text"
        assert message.content == "hello"

    @pytest.mark.asyncio
    async def test_sender_must_be_in_room(self, test_session, test_room, alice):
        await participant_service.release(test_session, alice.id)

        with pytest.raises(NotInRoomException) as exc_info:
            await message_service.send_message(test_session, alice.id, test_room.id, "text", "hello")
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_sender_cannot_post_to_other_room(self, test_session, media_room, alice):
        with pytest.raises(NotInRoomException):
            await message_service.send_message(test_session, alice.id, media_room.id, "text", "hello")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("content", [None, "", "   "])
    async def test_empty_text_rejected(self, test_session, test_room, alice, content):
        with pytest.raises(ValidationException):
            await message_service.send_message(test_session, alice.id, test_room.id, "text", content)

    @pytest.mark.asyncio
    async def test_too_long_text_rejected(self, test_session, test_room, alice):
        with pytest.raises(ValidationException):
            await message_service.send_message(
                test_session, alice.id, test_room.id, "text", "x" * (settings.message_max_length + 1)
            )

    @pytest.mark.asyncio
    async def test_participants_cannot_send_system_messages(self, test_session, test_room, alice):
        with pytest.raises(ValidationException):
            await message_service.send_message(test_session, alice.id, test_room.id, "system", "boo")

    @pytest.mark.asyncio
    async def test_file_message_requires_descriptor(self, test_session, media_room):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")
        with pytest.raises(ValidationException):
            await message_service.send_message(test_session, carol.id, media_room.id, "file", None, None)

    @pytest.mark.asyncio
    async def test_file_message_in_text_room_rejected(self, test_session, test_room, alice):
        with pytest.raises(FileTypeNotAllowedException):
            await message_service.send_message(
                test_session, alice.id, test_room.id, "file", None, _stored_file(test_room.id)
            )

    @pytest.mark.asyncio
    async def test_oversize_file_not_persisted(self, test_session, media_room):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")

        with pytest.raises(FileTooLargeException):
            await message_service.send_message(
                test_session, carol.id, media_room.id, "file", None, _stored_file(media_room.id, size=4096)
            )

        assert await message_service.count_messages(test_session, media_room.id) == 0

    @pytest.mark.asyncio
    async def test_file_message_with_caption(self, test_session, media_room):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")

        message = await message_service.send_message(
            test_session, carol.id, media_room.id, "file", "look", _stored_file(media_room.id)
        )

        response = MessageResponse.from_model(message)
        assert response.content == "look"
        assert response.file.original_name == "cat.png"
        assert response.file.size == 100

    @pytest.mark.asyncio
    @pytest.mark.parametrize("path", [
        "https://evil.example/malware.exe",
        "/uploads/rooms/elsewhere/abc.png",
        "/uploads/rooms/../abc.png",
    ])
    async def test_unknown_file_path_rejected(self, test_session, media_room, path):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")
        forged = FileDescriptor(
            stored_name="abc.png", original_name="cat.png", path=path, size=1, mime_type="image/png"
        )

        with pytest.raises(ValidationException):
            await message_service.send_message(test_session, carol.id, media_room.id, "file", None, forged)

        assert await message_service.count_messages(test_session, media_room.id, include_deleted=True) == 0

    @pytest.mark.asyncio
    async def test_other_rooms_file_rejected(self, test_session, test_room, media_room):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")
        foreign = _stored_file(test_room.id)

        with pytest.raises(ValidationException):
            await message_service.send_message(test_session, carol.id, media_room.id, "file", None, foreign)

    @pytest.mark.asyncio
    async def test_file_size_and_type_come_from_stored_file(self, test_session, media_room):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")
        understated = _stored_file(media_room.id, size=4096).model_copy(update={"size": 1})
        with pytest.raises(FileTooLargeException):
            await message_service.send_message(test_session, carol.id, media_room.id, "file", None, understated)

        relabeled = _stored_file(media_room.id, size=10, stored_name="notes.txt").model_copy(
            update={"size": 999, "mime_type": "application/x-msdownload", "stored_name": "evil.exe"}
        )
        message = await message_service.send_message(
            test_session, carol.id, media_room.id, "file", None, relabeled
        )

        assert message.file_size == 10
        assert message.file_mime_type == "text/plain"
        assert message.file_stored_name == "notes.txt"


class TestSoftDelete:
    """소프트 삭제 테스트"""

    @pytest.mark.asyncio
    async def test_cannot_delete_others_message(self, test_session, test_room, alice, bob):
        message = await message_service.send_message(test_session, alice.id, test_room.id, "text", "mine")

        with pytest.raises(AuthorizationException) as exc_info:
            await message_service.soft_delete_message(test_session, message.id, bob.id)
        assert exc_info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_delete_own_message_hides_it_from_history(self, test_session, test_room, alice):
        keep = await message_service.send_message(test_session, alice.id, test_room.id, "text", "keep")
        drop = await message_service.send_message(test_session, alice.id, test_room.id, "text", "drop")

        message, deleted = await message_service.soft_delete_message(test_session, drop.id, alice.id)

        assert deleted is True
        assert message.is_deleted is True
        assert message.deleted_at is not None

        history = await message_service.list_messages(test_session, test_room.id)
        assert [m.id for m in history] == [keep.id]

        with_deleted = await message_service.list_messages(test_session, test_room.id, include_deleted=True)
        assert [m.id for m in with_deleted] == [keep.id, drop.id]
        assert MessageResponse.from_model(with_deleted[1]).content is None

    @pytest.mark.asyncio
    async def test_delete_is_idempotent(self, test_session, test_room, alice):
        message = await message_service.send_message(test_session, alice.id, test_room.id, "text", "oops")

        _, first = await message_service.soft_delete_message(test_session, message.id, alice.id)
        _, second = await message_service.soft_delete_message(test_session, message.id, alice.id)

        assert first is True
        assert second is False

    @pytest.mark.asyncio
    async def test_delete_missing_message(self, test_session, alice):
        with pytest.raises(ResourceNotFoundException):
            await message_service.soft_delete_message(test_session, 424242, alice.id)


class TestHistory:
    """히스토리 / 검색 테스트"""

    @pytest.mark.asyncio
    async def test_list_messages_oldest_first_with_paging(self, test_session, test_room, alice):
        sent = [
            await message_service.send_message(test_session, alice.id, test_room.id, "text", f"msg {i}")
            for i in range(5)
        ]

        latest_two = await message_service.list_messages(test_session, test_room.id, limit=2)
        assert [m.id for m in latest_two] == [sent[3].id, sent[4].id]

        older = await message_service.list_messages(test_session, test_room.id, limit=2, skip=2)
        assert [m.id for m in older] == [sent[1].id, sent[2].id]

        assert await message_service.count_messages(test_session, test_room.id) == 5

    @pytest.mark.asyncio
    async def test_list_messages_after_id(self, test_session, test_room, alice):
        sent = [
            await message_service.send_message(test_session, alice.id, test_room.id, "text", f"msg {i}")
            for i in range(4)
        ]

        newer = await message_service.list_messages(test_session, test_room.id, after_id=sent[1].id)

        assert [m.id for m in newer] == [sent[2].id, sent[3].id]

    @pytest.mark.asyncio
    async def test_search_is_case_insensitive(self, test_session, test_room, alice):
        await message_service.send_message(test_session, alice.id, test_room.id, "text", "Hello World")
        await message_service.send_message(test_session, alice.id, test_room.id, "text", "goodbye")
        await message_service.send_message(test_session, alice.id, test_room.id, "text", "100% sure")

        results = await message_service.search_messages(test_session, test_room.id, "hello")
        assert [m.content for m in results] == ["Hello World"]

        # LIKE 와일드카드는 문자 그대로 검색
        results = await message_service.search_messages(test_session, test_room.id, "%")
        assert [m.content for m in results] == ["100% sure"]
        assert await message_service.count_search_results(test_session, test_room.id, "o") == 2

    @pytest.mark.asyncio
    async def test_list_files(self, test_session, media_room):
        carol = await participant_service.reserve_slot(test_session, media_room.id, "carol", "10.0.0.3")
        await message_service.send_message(test_session, carol.id, media_room.id, "text", "no file")
        file_message = await message_service.send_message(
            test_session, carol.id, media_room.id, "file", None, _stored_file(media_room.id)
        )

        files = await message_service.list_files(test_session, media_room.id)

        assert [m.id for m in files] == [file_message.id]

    @pytest.mark.asyncio
    async def test_system_message_has_no_sender(self, test_session, test_room):
        message = await message_service.create_system_message(test_session, test_room.id, "Room opened")

        assert message.kind == "system"
        assert message.sender_id is None

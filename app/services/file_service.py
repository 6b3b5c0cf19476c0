"""
File upload service layer.

채팅방 파일 업로드를 방 정책으로 검사한 뒤 로컬 업로드 디렉토리에 저장합니다.
"""

import mimetypes
import uuid
from pathlib import Path
from typing import Optional

import aiofiles
from fastapi import UploadFile

from app.core.config import settings
from app.core.errors import FileTooLargeException, ValidationException, ValidationError
from app.core.logging import get_logger, log_file_operation
from app.models.rooms import Room
from app.schemas.message import FileDescriptor
from app.services import room_service

logger = get_logger(__name__)

ROOM_FILES_SUBDIR = "rooms"
URL_PREFIX = "/uploads"
UPLOAD_CHUNK_SIZE = 64 * 1024


# =============================================================================
# File Utilities
# =============================================================================

def room_upload_dir(room_id: str) -> Path:
    """방별 업로드 디렉토리"""
    return Path(settings.upload_dir) / ROOM_FILES_SUBDIR / room_id


def ensure_upload_directories(room_id: str) -> Path:
    """업로드 디렉토리가 존재하는지 확인하고 생성"""
    directory = room_upload_dir(room_id)
    directory.mkdir(parents=True, exist_ok=True)
    return directory


def get_file_extension(filename: str) -> str:
    """파일 확장자 추출"""
    return Path(filename).suffix.lower()


def generate_unique_filename(original_filename: str) -> str:
    """고유한 파일명 생성"""
    extension = get_file_extension(original_filename)
    return f"{uuid.uuid4()}{extension}"


def public_path(room_id: str, stored_name: str) -> str:
    """클라이언트에 노출되는 상대 URL"""
    return f"{URL_PREFIX}/{ROOM_FILES_SUBDIR}/{room_id}/{stored_name}"


def _local_path(descriptor_path: str) -> Optional[Path]:
    prefix = f"{URL_PREFIX}/{ROOM_FILES_SUBDIR}/"
    if not descriptor_path.startswith(prefix):
        return None
    room_id, _, stored_name = descriptor_path[len(prefix):].partition("/")
    if not room_id or not stored_name or "/" in stored_name or ".." in (room_id, stored_name):
        return None
    return room_upload_dir(room_id) / stored_name


# =============================================================================
# File Upload Operations
# =============================================================================

async def store_room_file(room: Room, file: UploadFile, participant_id: int) -> FileDescriptor:
    """
    업로드 파일 저장

    방 종류/MIME 타입/선언된 크기는 읽기 전에 검사하고, 본문은 청크 단위로
    읽으면서 기록합니다. 누적 크기가 방 최대 크기를 넘는 즉시 중단하고
    부분 파일을 삭제합니다.

    Raises:
        ValidationException: 파일이 없음
        FileTooLargeException / FileTypeNotAllowedException: 방 정책 위반
    """
    if not file or not file.filename:
        raise ValidationException(
            "No file provided",
            validation_errors=[ValidationError(field="file", message="This field is required")]
        )

    mime_type = (file.content_type or "").split(";")[0].strip().lower() or None
    # 크기를 알 수 없으면 0으로 두고 스트리밍 중에 다시 검사
    room_service.check_file_policy(room, file.size or 0, mime_type)

    directory = ensure_upload_directories(room.id)
    stored_name = generate_unique_filename(file.filename)
    file_path = directory / stored_name

    size = 0
    try:
        async with aiofiles.open(file_path, 'wb') as f:
            while True:
                chunk = await file.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                size += len(chunk)
                if size > room.max_file_size:
                    raise FileTooLargeException(size, room.max_file_size)
                await f.write(chunk)
    except Exception:
        # 저장 실패 시 파일 삭제
        if file_path.exists():
            file_path.unlink()
        raise

    log_file_operation(logger, "upload", str(file_path), participant_id, file_size=size, room_id=room.id)
    return FileDescriptor(
        stored_name=stored_name,
        original_name=Path(file.filename).name,
        path=public_path(room.id, stored_name),
        size=size,
        mime_type=mime_type or "application/octet-stream"
    )


def resolve_room_file(room_id: str, descriptor: FileDescriptor) -> FileDescriptor:
    """
    클라이언트가 보낸 파일 정보를 저장소 기준으로 다시 만든다

    경로는 이 방의 업로드 디렉토리에 실제로 저장된 파일이어야 합니다.
    저장 이름/크기는 디스크의 파일에서, MIME 타입은 확장자에서 계산하고
    확장자로 알 수 없을 때만 클라이언트 값을 씁니다.

    Raises:
        ValidationException: 이 방에 저장된 파일이 아님
    """
    path = _local_path(descriptor.path)
    if path is None or path.parent != room_upload_dir(room_id) or not path.is_file():
        raise ValidationException(
            "File is not stored in this room",
            validation_errors=[ValidationError(field="file.path", message="Unknown file")]
        )

    mime_type = mimetypes.guess_type(path.name)[0] or descriptor.mime_type.lower()
    return FileDescriptor(
        stored_name=path.name,
        original_name=Path(descriptor.original_name).name or path.name,
        path=public_path(room_id, path.name),
        size=path.stat().st_size,
        mime_type=mime_type
    )


async def delete_stored_file(descriptor: FileDescriptor, participant_id: int) -> bool:
    """저장된 파일 삭제 (메시지 저장 실패 시 정리용)"""
    path = _local_path(descriptor.path)
    if path is None or not path.exists():
        return False

    path.unlink()
    log_file_operation(logger, "delete", str(path), participant_id)
    return True

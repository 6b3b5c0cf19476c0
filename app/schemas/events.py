"""
WebSocket 이벤트 스키마

클라이언트 -> 서버 이벤트는 type 필드로 구분되는 pydantic 모델로 검증하고,
서버 -> 클라이언트 이벤트는 dict 빌더 함수로 만든다.
"""
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError as PydanticValidationError

from app.core.errors import ValidationException, ValidationError, BaseCustomException
from app.utils.time_utils import utc_now, isoformat
from .message import FileDescriptor, MessageResponse
from .room import RoomPublic


# =============================================================================
# Inbound (client -> server)
# =============================================================================

class JoinRoomEvent(BaseModel):
    type: Literal["join_room"]
    pin: str
    nickname: str


class AttachEvent(BaseModel):
    """HTTP로 입장한 참여자를 이 연결에 바인딩"""
    type: Literal["attach"]
    session_token: str


class SendMessageEvent(BaseModel):
    type: Literal["send_message"]
    kind: str = "text"
    content: Optional[str] = None
    file: Optional[FileDescriptor] = None


class TypingEvent(BaseModel):
    type: Literal["typing"]
    is_typing: bool = True


class DeleteMessageEvent(BaseModel):
    type: Literal["delete_message"]
    message_id: int


class LeaveRoomEvent(BaseModel):
    type: Literal["leave_room"]


class PingEvent(BaseModel):
    type: Literal["ping"]


InboundEvent = Annotated[
    Union[
        JoinRoomEvent,
        AttachEvent,
        SendMessageEvent,
        TypingEvent,
        DeleteMessageEvent,
        LeaveRoomEvent,
        PingEvent,
    ],
    Field(discriminator="type"),
]

_inbound_adapter = TypeAdapter(InboundEvent)


def parse_inbound_event(data: Any):
    """
    수신 프레임을 이벤트 모델로 변환

    Raises:
        ValidationException: 알 수 없는 type이거나 필드가 잘못된 경우
    """
    if not isinstance(data, dict):
        raise ValidationException(
            "Event must be a JSON object",
            validation_errors=[ValidationError(field="type", message="Expected a JSON object")]
        )
    try:
        return _inbound_adapter.validate_python(data)
    except PydanticValidationError as e:
        errors = [
            ValidationError(
                field=".".join(str(part) for part in err["loc"]) or "type",
                message=err["msg"],
            )
            for err in e.errors()
        ]
        raise ValidationException("Invalid event", validation_errors=errors)


# =============================================================================
# Outbound (server -> client)
# =============================================================================

def _event(event_type: str, **payload) -> Dict[str, Any]:
    return {"type": event_type, **payload, "timestamp": isoformat(utc_now())}


def participant_summary(participant) -> Dict[str, Any]:
    return {"id": participant.id, "nickname": participant.nickname}


def room_joined_event(participant, room, online_count: int, participants: List) -> Dict[str, Any]:
    room_data = RoomPublic.model_validate(room).model_copy(update={"online_count": online_count})
    return _event(
        "room_joined",
        room=room_data.model_dump(mode="json"),
        participant=participant_summary(participant),
        session_token=participant.session_token,
        participants=[participant_summary(p) for p in participants],
    )


def user_joined_event(room_id: str, participant) -> Dict[str, Any]:
    return _event("user_joined", room_id=room_id, participant=participant_summary(participant))


def user_left_event(room_id: str, participant_id: int, nickname: str, reason: str) -> Dict[str, Any]:
    return _event(
        "user_left",
        room_id=room_id,
        participant={"id": participant_id, "nickname": nickname},
        reason=reason,
    )


def user_typing_event(room_id: str, participant_id: int, nickname: str, is_typing: bool) -> Dict[str, Any]:
    return _event(
        "user_typing",
        room_id=room_id,
        participant_id=participant_id,
        nickname=nickname,
        is_typing=is_typing,
    )


def new_message_event(message) -> Dict[str, Any]:
    return _event("new_message", message=MessageResponse.from_model(message).model_dump(mode="json"))


def message_deleted_event(room_id: str, message_id: int) -> Dict[str, Any]:
    return _event("message_deleted", room_id=room_id, message_id=message_id)


def room_closed_event(room_id: str, reason: str) -> Dict[str, Any]:
    return _event("room_closed", room_id=room_id, reason=reason)


def left_room_event(room_id: Optional[str]) -> Dict[str, Any]:
    return _event("left_room", room_id=room_id)


def pong_event() -> Dict[str, Any]:
    return _event("pong")


def error_event(exc: BaseCustomException) -> Dict[str, Any]:
    return {"type": "error", **exc.to_dict()}

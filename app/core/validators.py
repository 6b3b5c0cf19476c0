import re
from typing import Optional, List, Any, Union

from .config import settings
from .errors import ValidationException, ValidationError

ROOM_KINDS = ["text", "multimedia"]
MESSAGE_KINDS = ["text", "file", "system"]

NICKNAME_PATTERN = re.compile(r'^[a-zA-Z0-9\s\-_.]+$')
PIN_PATTERN = re.compile(r'^\d{4,10}$')
MIME_PATTERN = re.compile(r'^[\w.+-]+/[\w.+-]+$')


class Validator:
    """입력 검증을 위한 유틸리티 클래스"""

    @staticmethod
    def validate_required(value: Any, field_name: str) -> Any:
        """필수 필드 검증"""
        if value is None or (isinstance(value, str) and value.strip() == ""):
            raise ValidationException(
                f"{field_name} is required",
                validation_errors=[
                    ValidationError(field=field_name, message="This field is required", value=value)
                ]
            )
        return value

    @staticmethod
    def validate_string_length(
        value: str,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None
    ) -> str:
        """문자열 길이 검증"""
        errors = []

        if min_length and len(value) < min_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be at least {min_length} characters long",
                    value=len(value)
                )
            )

        if max_length and len(value) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Must be no more than {max_length} characters long",
                    value=len(value)
                )
            )

        if errors:
            raise ValidationException(
                f"{field_name} length validation failed",
                validation_errors=errors
            )

        return value

    @staticmethod
    def validate_room_name(name: Optional[str], field_name: str = "name") -> str:
        """채팅방 이름 검증 (3-100자)"""
        Validator.validate_required(name, field_name)
        return Validator.validate_string_length(name.strip(), field_name, min_length=3, max_length=100)

    @staticmethod
    def validate_nickname(nickname: Optional[str], field_name: str = "nickname") -> str:
        """닉네임 검증"""
        Validator.validate_required(nickname, field_name)
        nickname = nickname.strip()
        errors = []

        if len(nickname) < 2 or len(nickname) > 50:
            errors.append(
                ValidationError(
                    field=field_name,
                    message="Nickname must be between 2 and 50 characters",
                    value=len(nickname)
                )
            )

        # 영문자, 숫자, 공백, 하이픈, 언더스코어, 마침표만 허용
        if not NICKNAME_PATTERN.match(nickname):
            errors.append(
                ValidationError(
                    field=field_name,
                    message="Nickname can only contain letters, numbers, spaces, hyphens, underscores and dots"
                )
            )

        if errors:
            raise ValidationException(
                "Nickname validation failed",
                validation_errors=errors
            )

        return nickname

    @staticmethod
    def validate_pin(pin: Optional[str], field_name: str = "pin") -> str:
        """PIN 형식 검증 (숫자 4-10자리)"""
        Validator.validate_required(pin, field_name)
        pin = str(pin).strip()
        if not PIN_PATTERN.match(pin):
            raise ValidationException(
                "Invalid PIN format",
                validation_errors=[
                    ValidationError(field=field_name, message="PIN must be 4-10 digits", value=pin)
                ]
            )
        return pin

    @staticmethod
    def validate_int_range(value: int, field_name: str, min_value: int, max_value: int) -> int:
        """정수 범위 검증"""
        if value is None or value < min_value or value > max_value:
            raise ValidationException(
                f"{field_name} out of range",
                validation_errors=[
                    ValidationError(
                        field=field_name,
                        message=f"Must be between {min_value} and {max_value}",
                        value=value
                    )
                ]
            )
        return value

    @staticmethod
    def validate_capacity(value: int, field_name: str = "max_participants") -> int:
        """최대 참여자 수 검증 (1-1000)"""
        return Validator.validate_int_range(value, field_name, 1, 1000)

    @staticmethod
    def validate_positive_integer(value: Union[int, str], field_name: str) -> int:
        """양의 정수 검증"""
        try:
            int_value = int(value)
            if int_value <= 0:
                raise ValueError
            return int_value
        except (ValueError, TypeError):
            raise ValidationException(
                f"{field_name} must be a positive integer",
                validation_errors=[
                    ValidationError(
                        field=field_name,
                        message="Must be a positive integer",
                        value=value
                    )
                ]
            )

    @staticmethod
    def validate_enum(value: str, allowed_values: List[str], field_name: str) -> str:
        """열거형 값 검증"""
        if value not in allowed_values:
            raise ValidationException(
                f"Invalid {field_name}",
                validation_errors=[
                    ValidationError(
                        field=field_name,
                        message=f"Must be one of: {', '.join(allowed_values)}",
                        value=value
                    )
                ]
            )
        return value

    @staticmethod
    def validate_file_types(file_types: Union[str, List[str], None], field_name: str = "allowed_file_types") -> str:
        """허용 MIME 타입 목록 검증 후 콤마 구분 문자열로 정규화"""
        if file_types is None:
            return settings.default_allowed_file_types

        if isinstance(file_types, str):
            items = [item.strip().lower() for item in file_types.split(",")]
        else:
            items = [item.strip().lower() for item in file_types]
        items = [item for item in items if item]

        invalid = [item for item in items if not MIME_PATTERN.match(item)]
        if invalid:
            raise ValidationException(
                "Invalid file type list",
                validation_errors=[
                    ValidationError(field=field_name, message="Must be MIME types like image/png", value=invalid)
                ]
            )

        return ",".join(dict.fromkeys(items))

    @staticmethod
    def validate_message_content(content: Optional[str], field_name: str = "content") -> str:
        """텍스트 메시지 내용 검증"""
        errors = []
        max_length = settings.message_max_length

        if content is None or content.strip() == "":
            errors.append(
                ValidationError(
                    field=field_name,
                    message="Message content cannot be empty"
                )
            )
        elif len(content) > max_length:
            errors.append(
                ValidationError(
                    field=field_name,
                    message=f"Message content must be no more than {max_length} characters",
                    value=len(content)
                )
            )

        if errors:
            raise ValidationException(
                "Message content validation failed",
                validation_errors=errors
            )

        return content

    @staticmethod
    def validate_search_query(query: Optional[str], field_name: str = "q") -> str:
        """검색어 검증"""
        Validator.validate_required(query, field_name)
        return Validator.validate_string_length(query.strip(), field_name, min_length=1, max_length=100)

    @staticmethod
    def validate_pagination(limit: int, skip: int) -> tuple[int, int]:
        """페이지네이션 파라미터 검증"""
        errors = []

        if limit < 1 or limit > 100:
            errors.append(
                ValidationError(
                    field="limit",
                    message="Limit must be between 1 and 100",
                    value=limit
                )
            )

        if skip < 0:
            errors.append(
                ValidationError(
                    field="skip",
                    message="Skip must be non-negative",
                    value=skip
                )
            )

        if errors:
            raise ValidationException(
                "Pagination validation failed",
                validation_errors=errors
            )

        return limit, skip


def split_file_types(allowed_file_types: Optional[str]) -> List[str]:
    """콤마 구분 MIME 문자열을 리스트로 변환"""
    if not allowed_file_types:
        return []
    return [item.strip() for item in allowed_file_types.split(",") if item.strip()]

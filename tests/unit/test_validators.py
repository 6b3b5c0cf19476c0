import pytest

from app.core.config import settings
from app.core.errors import ValidationException
from app.core.validators import Validator, split_file_types


class TestValidator:
    """입력 검증 테스트"""

    def test_validate_nickname_strips_whitespace(self):
        assert Validator.validate_nickname("  alex  ") == "alex"

    @pytest.mark.parametrize("nickname", ["al ex", "alex_1", "a.b-c", "AB"])
    def test_valid_nicknames(self, nickname):
        assert Validator.validate_nickname(nickname) == nickname

    @pytest.mark.parametrize("nickname", [None, "", "a", "x" * 51, "alex!", "<script>"])
    def test_invalid_nicknames(self, nickname):
        with pytest.raises(ValidationException):
            Validator.validate_nickname(nickname)

    def test_validate_pin(self):
        assert Validator.validate_pin(" 482913 ") == "482913"
        with pytest.raises(ValidationException):
            Validator.validate_pin("48a913")

    def test_validate_room_name(self):
        assert Validator.validate_room_name("  Lobby  ") == "Lobby"
        with pytest.raises(ValidationException):
            Validator.validate_room_name("ab")
        with pytest.raises(ValidationException):
            Validator.validate_room_name("x" * 101)

    @pytest.mark.parametrize("capacity", [1, 50, 1000])
    def test_valid_capacity(self, capacity):
        assert Validator.validate_capacity(capacity) == capacity

    @pytest.mark.parametrize("capacity", [0, -1, 1001])
    def test_invalid_capacity(self, capacity):
        with pytest.raises(ValidationException):
            Validator.validate_capacity(capacity)

    def test_validate_file_types_normalizes(self):
        assert Validator.validate_file_types([" Image/PNG ", "image/png", "text/plain"]) == "image/png,text/plain"
        assert Validator.validate_file_types("image/jpeg, application/pdf") == "image/jpeg,application/pdf"
        assert Validator.validate_file_types(None) == settings.default_allowed_file_types

    def test_validate_file_types_rejects_garbage(self):
        with pytest.raises(ValidationException):
            Validator.validate_file_types(["png"])

    def test_validate_message_content(self):
        assert Validator.validate_message_content("hi") == "hi"
        with pytest.raises(ValidationException):
            Validator.validate_message_content("   ")

    def test_validate_pagination(self):
        assert Validator.validate_pagination(20, 0) == (20, 0)
        with pytest.raises(ValidationException):
            Validator.validate_pagination(0, 0)
        with pytest.raises(ValidationException):
            Validator.validate_pagination(10, -1)

    def test_validation_exception_payload(self):
        with pytest.raises(ValidationException) as exc_info:
            Validator.validate_nickname("!")

        payload = exc_info.value.to_dict()
        assert payload["error"] == "validation_error"
        assert payload["status_code"] == 422
        assert payload["validation_errors"]

    def test_split_file_types(self):
        assert split_file_types("image/png, text/plain") == ["image/png", "text/plain"]
        assert split_file_types("") == []
        assert split_file_types(None) == []

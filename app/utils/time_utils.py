"""
시간 관련 유틸리티 함수
"""
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """
    현재 UTC 시각을 tzinfo 없는 datetime으로 반환합니다.

    DB 컬럼(DateTime)은 모두 naive UTC로 저장합니다.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    외부에서 받은 datetime을 naive UTC로 정규화합니다.

    tz-aware 값은 UTC로 변환 후 tzinfo를 제거하고, naive 값은 UTC로 간주합니다.
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        return dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def isoformat(dt: Optional[datetime]) -> Optional[str]:
    """naive UTC datetime을 'Z' 접미사가 붙은 ISO 문자열로 변환"""
    if dt is None:
        return None
    return dt.isoformat() + "Z"

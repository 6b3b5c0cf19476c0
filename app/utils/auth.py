from datetime import timedelta
from typing import Annotated, Optional

from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.core.config import settings
from app.core.errors import AuthenticationException, invalid_token_error
from app.utils.time_utils import utc_now

# 관리자 토큰은 외부 발급자가 만든다. 여기서는 검증만 한다.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token", auto_error=False)


def create_access_token(data: dict, expires_delta: timedelta = None):
    """HS256 액세스 토큰 생성 (테스트와 로컬 개발용 발급)"""
    to_encode = data.copy()
    if expires_delta:
        expire = utc_now() + expires_delta
    else:
        expire = utc_now() + timedelta(hours=settings.access_token_expire_hours)
    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)
    return encoded_jwt


def decode_access_token(token: str) -> Optional[dict]:
    """토큰 디코드. 서명/만료 검증 실패 시 None"""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError:
        return None


async def get_current_admin(token: Annotated[Optional[str], Depends(oauth2_scheme)]) -> str:
    """Bearer 토큰의 sub를 관리자 ID로 반환"""
    if token is None:
        raise AuthenticationException("Does not have token")

    payload = decode_access_token(token)
    if payload is None:
        raise invalid_token_error()

    admin_id = payload.get("sub")
    if not admin_id:
        raise invalid_token_error()

    return str(admin_id)

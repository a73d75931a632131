# store_service/app/auth_utils.py
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE = timedelta(hours=24)


class InvalidToken(Exception):
    """Token signature is wrong, the token is malformed or it has expired."""


def _encode(password: str) -> bytes:
    # bcrypt only looks at the first 72 bytes
    return password.encode("utf-8")[:72]


def hash_password(password: str, rounds: int = 12) -> str:
    """Хэширует пароль с помощью bcrypt (новая соль на каждый вызов)."""
    return bcrypt.hashpw(_encode(password), bcrypt.gensalt(rounds)).decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Проверяет пароль, сравнивая с хэшем."""
    try:
        return bcrypt.checkpw(_encode(plain_password), hashed_password.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


def create_access_token(user_id: int, secret_key: str, expires_delta: timedelta = ACCESS_TOKEN_EXPIRE) -> str:
    """Создает JWT токен с указанным временем истечения."""
    expire = datetime.now(timezone.utc) + expires_delta
    return jwt.encode({"id": user_id, "exp": expire}, secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str, secret_key: str) -> int:
    """Returns the user id stored in ``token`` or raises InvalidToken."""
    try:
        payload = jwt.decode(token, secret_key, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError as e:
        raise InvalidToken("Token has expired") from e
    except jwt.InvalidTokenError as e:
        raise InvalidToken("Invalid token") from e

    user_id = payload.get("id")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        raise InvalidToken("Invalid token")
    return user_id

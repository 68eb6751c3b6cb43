from __future__ import annotations

from typing import Any, Dict, Optional

from jose import JWTError, jwt

from quizmaster.core.config import settings


# Tokens are issued by the account service; this service only verifies them.
def decode_token(token: str) -> Dict[str, Any]:
    return jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])


def safe_decode_token(token: str) -> Optional[Dict[str, Any]]:
    try:
        return decode_token(token)
    except JWTError:
        return None

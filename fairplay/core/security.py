import secrets

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from fairplay.config import settings
from fairplay.core.logger import get_logger

logger = get_logger("security")

basic_auth = HTTPBasic(auto_error=False)


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_credentials(username: str, password: str) -> bool:
    if not settings.security.operator_password_hash:
        return False

    # Check username
    if not secrets.compare_digest(username, settings.security.operator_username):
        return False

    # Check password
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"),
            settings.security.operator_password_hash.encode("utf-8"),
        )
    except ValueError:
        logger.error("Operator password hash is not a valid bcrypt hash")
        return False


def require_operator(credentials: HTTPBasicCredentials = Depends(basic_auth)) -> str:
    if credentials is None or not verify_credentials(credentials.username, credentials.password):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Basic"},
        )
    return credentials.username

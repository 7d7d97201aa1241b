"""Optional HTTP Basic guard for the dashboard and its JSON API.

Media downloads under ``/api/files`` stay public: Instagram and YouTube
fetch them without credentials.
"""

from __future__ import annotations

import os
import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPBasic, HTTPBasicCredentials

REALM = "crosspost"

basic = HTTPBasic(auto_error=False, realm=REALM)


def credentials_configured() -> tuple[str, str] | None:
    user = os.getenv("ADMIN_USER")
    password = os.getenv("ADMIN_PASS")
    if user and password:
        return user, password
    return None


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail="Unauthorized",
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def require_admin(credentials: HTTPBasicCredentials | None = Depends(basic)) -> None:
    expected = credentials_configured()
    if expected is None:
        return
    if credentials is None:
        raise _unauthorized()
    user_ok = secrets.compare_digest(credentials.username.encode(), expected[0].encode())
    pass_ok = secrets.compare_digest(credentials.password.encode(), expected[1].encode())
    if not (user_ok and pass_ok):
        raise _unauthorized()

"""
Admin Router

User administration. Every route here is admin-only; the dispatcher runs
the admin guard before any handler is entered.
"""

import re
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from portal.auth.passwords import hash_password
from portal.errors import ConflictError, NotFoundError
from portal.formatters import format_user_row, serialize_tags
from web.api.dispatcher import ApiRequest, ApiResponse, RouteGroup

router = RouteGroup("/api/admin")

USER_ID_PATH = re.compile(r"/users/(\d+)")
# SQLite INTEGER is a signed 64-bit value
MAX_USER_ID = 2 ** 63 - 1


class AdminUserCreate(BaseModel):
    """New user, as entered by an admin."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    email: EmailStr
    password: str = Field(min_length=1)
    department: str = ""
    is_admin: bool = False
    job_title: str = Field(default="", alias="jobTitle")
    phone: str = ""
    location: str = ""
    bio: str = ""
    tags: Union[list[str], str] = []
    status: str = "Активний"


class AdminUserUpdate(BaseModel):
    """Partial user update; empty values keep the stored ones."""
    model_config = ConfigDict(populate_by_name=True)

    name: Optional[str] = None
    email: Optional[EmailStr] = None
    password: Optional[str] = None
    department: Optional[str] = None
    is_admin: Optional[bool] = None
    job_title: Optional[str] = Field(default=None, alias="jobTitle")
    phone: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    tags: Optional[Union[list[str], str]] = None
    status: Optional[str] = None


def _parse_user_id(user_id: str) -> int:
    """Digits beyond the SQLite integer range cannot name a stored user."""
    value = int(user_id)
    if value > MAX_USER_ID:
        raise NotFoundError("Користувача не знайдено")
    return value


def _get_user_or_404(request: ApiRequest, user_id: str) -> dict:
    user = request.services.db.get_user_by_id(_parse_user_id(user_id))
    if user is None:
        raise NotFoundError("Користувача не знайдено")
    return user


@router.get("/overview", require_admin=True)
def get_overview(request: ApiRequest, response: ApiResponse):
    """Identity statistics plus the user list."""
    db = request.services.db
    response.send({
        "stats": db.get_admin_stats(),
        "users": [format_user_row(user) for user in db.get_all_users()],
    })


@router.get("/users", require_admin=True)
def list_users(request: ApiRequest, response: ApiResponse):
    users = request.services.db.get_all_users()
    response.send([format_user_row(user) for user in users])


@router.post("/users", require_admin=True)
def create_user(request: ApiRequest, response: ApiResponse):
    """Create a user directly, bypassing email confirmation."""
    data = request.parse(AdminUserCreate, "Поля name, email та password є обов’язковими")
    db = request.services.db

    if db.get_user_by_email(data.email):
        raise ConflictError("Користувач з таким email вже існує")

    user_id = db.create_user(
        name=data.name,
        email=data.email,
        password=hash_password(data.password, request.services.password_scheme),
        department=data.department,
        is_admin=data.is_admin,
        job_title=data.job_title,
        phone=data.phone,
        location=data.location,
        bio=data.bio,
        tags=serialize_tags(data.tags),
        status=data.status,
    )

    response.send(format_user_row(db.get_user_by_id(user_id)), 201)


@router.put(USER_ID_PATH, require_admin=True)
def update_user(request: ApiRequest, response: ApiResponse, user_id: str):
    user = _get_user_or_404(request, user_id)
    data = request.parse(AdminUserUpdate)
    db = request.services.db

    if data.email:
        owner = db.get_user_by_email(data.email)
        if owner and owner["id"] != user["id"]:
            raise ConflictError("Користувач з таким email вже існує")

    db.update_user(
        user["id"],
        name=data.name or None,
        email=data.email or None,
        password=(hash_password(data.password, request.services.password_scheme)
                  if data.password else None),
        department=data.department or None,
        is_admin=data.is_admin,
        job_title=data.job_title or None,
        phone=data.phone or None,
        location=data.location or None,
        bio=data.bio or None,
        tags=serialize_tags(data.tags) if data.tags is not None else None,
        status=data.status or None,
    )

    response.send(format_user_row(db.get_user_by_id(user["id"])))


@router.delete(USER_ID_PATH, require_admin=True)
def delete_user(request: ApiRequest, response: ApiResponse, user_id: str):
    """Delete a user; their sessions are removed with them."""
    if not request.services.db.delete_user(_parse_user_id(user_id)):
        raise NotFoundError("Користувача не знайдено")

    response.send({"deleted": True})

"""
Authentication Router

Endpoints for login, email-confirmed registration and logout.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from portal.auth.passwords import verify_password
from portal.errors import AuthenticationError, ValidationError
from portal.formatters import format_user_row
from web.api.dispatcher import ApiRequest, ApiResponse, RouteGroup

router = RouteGroup("/api/auth")


class UserLogin(BaseModel):
    """User login request."""
    email: str = ""
    password: str = ""


class RegistrationRequest(BaseModel):
    """Registration request: the email to confirm plus optional prefill."""
    email: EmailStr
    name: Optional[str] = ""
    department: Optional[str] = ""


class CompleteRegistration(BaseModel):
    """Registration completion, with or without the email."""
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)

    token: str = ""
    email: Optional[str] = None
    password: str = ""
    confirm_password: Optional[str] = Field(default=None, alias="confirmPassword")


@router.post("/login")
def login(request: ApiRequest, response: ApiResponse):
    """
    Authenticate by email and password and open a session.
    """
    credentials = request.parse(UserLogin, "Потрібні email та пароль")
    if not credentials.email or not credentials.password:
        raise ValidationError("Потрібні email та пароль")

    db = request.services.db
    user = db.get_user_by_email(credentials.email.strip())
    if not user or not verify_password(credentials.password, user["password"]):
        raise AuthenticationError("Невірні облікові дані")

    # Update last login
    db.update_last_login(user["id"])

    token = request.services.sessions.create_session(user["id"])
    response.send({
        "token": token,
        "user": format_user_row(db.get_user_by_id(user["id"])),
    })


@router.post("/register-request")
def register_request(request: ApiRequest, response: ApiResponse):
    """
    Issue a confirmation code for an email and mail it.
    A repeated request replaces the previous code.
    """
    data = request.parse(RegistrationRequest, "Потрібен email для реєстрації")

    ticket = request.services.registration.request_registration(
        data.email, name=data.name or "", department=data.department or ""
    )

    payload = {
        "message": "Лист із підтвердженням надіслано. "
                   "Перевірте пошту, щоб завершити реєстрацію.",
        "expiresAt": ticket.expires_at,
    }
    if request.services.mailer.preview:
        payload["confirmationLink"] = ticket.confirmation_link
        payload["tokenPreview"] = ticket.token

    response.send(payload)


@router.post("/complete-registration")
def complete_registration(request: ApiRequest, response: ApiResponse):
    """
    Redeem a confirmation code, create the account and sign it in.
    """
    data = request.parse(CompleteRegistration, "Потрібні token та password")

    completed = request.services.registration.complete_registration(
        data.token,
        data.password,
        confirm_password=data.confirm_password,
        email=data.email,
    )

    response.send({"token": completed.token, "user": completed.user})


@router.post("/logout")
def logout(request: ApiRequest, response: ApiResponse):
    """
    Revoke the session whose token is in the body.
    Revoking an unknown token is not an error.
    """
    token = request.json().get("token")
    revoked = request.services.sessions.revoke_session(
        str(token) if token else None
    )

    response.send({"message": "Сесію завершено", "revoked": revoked})

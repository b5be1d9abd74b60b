"""
Profile Router

The signed-in user's own profile.
"""

from portal.errors import ValidationError
from web.api.dispatcher import ApiRequest, ApiResponse, RouteGroup

router = RouteGroup("/api/profile")


@router.get("")
def get_profile(request: ApiRequest, response: ApiResponse):
    """Return the session user."""
    session = request.services.sessions.require_user(request, response)
    if session is None:
        return

    response.send(session.user)


@router.post("/status")
def update_profile_status(request: ApiRequest, response: ApiResponse):
    """Set the session user's status line."""
    sessions = request.services.sessions
    session = sessions.require_user(request, response)
    if session is None:
        return

    status = str(request.json().get("status") or "").strip()
    if not status:
        raise ValidationError("Статус не може бути порожнім")

    request.services.db.update_user_status(session.user["id"], status)

    refreshed = sessions.get_session_user(session.token)
    response.send(refreshed or session.user)

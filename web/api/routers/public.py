"""
Public Router

Unauthenticated service endpoints.
"""

from web.api.dispatcher import ApiRequest, ApiResponse, RouteGroup

router = RouteGroup("/api")


@router.get("/health")
def health_check(request: ApiRequest, response: ApiResponse):
    """Health check endpoint."""
    response.send({
        "status": "ok",
        "database": request.services.db.db_path.name,
    })

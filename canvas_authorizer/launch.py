"""
LTI launch identity, as asserted by a prior launch and kept in the cookie session.
The LTI collaborator writes it with save_launch_info(); this package only reads it.
"""
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from canvas_authorizer.config import SESSION_LAUNCH_KEY


@dataclass(frozen=True)
class LaunchInfo:
    canvas_host: str
    user_id: int | str


# request -> LaunchInfo, or None when no valid launch exists
LaunchInfoGetter = Callable[[Request], LaunchInfo | None]


def session_launch_info(request: Request) -> LaunchInfo | None:
    """Default getter: read {canvasHost, userId} from the Starlette session."""
    if "session" not in request.scope:
        # No SessionMiddleware installed: no launch can have happened
        return None
    data = request.session.get(SESSION_LAUNCH_KEY)
    if not isinstance(data, dict):
        return None
    canvas_host = data.get("canvasHost")
    user_id = data.get("userId")
    if not canvas_host or user_id is None or user_id == "":
        return None
    return LaunchInfo(canvas_host=canvas_host, user_id=user_id)


def save_launch_info(request: Request, launch: LaunchInfo) -> None:
    request.session[SESSION_LAUNCH_KEY] = {"canvasHost": launch.canvas_host, "userId": launch.user_id}

from fastapi import APIRouter, Depends

from deps import Container, current_user_id, get_container
from widget import build_entry

router = APIRouter(prefix="/api", tags=["widget"])


@router.get("/widget")
def widget_entry(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    """What the home-screen widget shows; reads only this user's shared state file."""
    return build_entry(container.sessions.state_for(user_id)).as_dict()

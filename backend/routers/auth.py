"""
Sign in / sign out. Password sign-in needs the Supabase backend; sign-out also
works with header identities and drops the user's cached tracking state.
"""
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from deps import Container, current_user_id, get_container

router = APIRouter(prefix="/api/auth", tags=["auth"])


class SignInRequest(BaseModel):
    email: str
    password: str


@router.post("/sign-in")
async def sign_in(req: SignInRequest, container: Container = Depends(get_container)):
    if container.auth is None:
        raise HTTPException(status_code=404, detail="Password sign-in is not configured")
    user_id = await container.auth.sign_in(req.email, req.password)
    return {"user_id": user_id}


@router.post("/sign-out")
async def sign_out(
    container: Container = Depends(get_container),
    user_id: str = Depends(current_user_id),
):
    if container.auth is not None:
        await container.auth.sign_out()
    container.sessions.forget(user_id)
    container.sessions.state_for(user_id).is_logged_in = False
    return {"user_id": user_id, "signed_out": True}

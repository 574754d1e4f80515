from fastapi import APIRouter
from fastapi.responses import PlainTextResponse

from teamauth.api.v1 import auth, okta, organizations, saml, team_members

api_router = APIRouter()
api_router.include_router(auth.router, prefix="/auth", tags=["authentication"])
api_router.include_router(okta.router, prefix="/okta", tags=["okta"])
api_router.include_router(saml.router, prefix="/saml", tags=["saml"])
api_router.include_router(organizations.router, prefix="/organizations", tags=["organizations"])
api_router.include_router(
    team_members.router,
    prefix="/organizations/{organization_id}/members",
    tags=["team-members"],
)


@api_router.get("/ping", response_class=PlainTextResponse, include_in_schema=False)
async def ping() -> str:
    return "pong"

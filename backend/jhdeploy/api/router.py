# jhdeploy/api/router.py
from fastapi import APIRouter
from jhdeploy.api import account, pipeline_runs

api_router = APIRouter()

# Include the routes from the different modules
api_router.include_router(pipeline_runs.router, prefix="/pipeline", tags=["pipeline"])
api_router.include_router(account.router, prefix="/account", tags=["account"])

from fastapi import APIRouter
from sqlgate.api.endpoints import query

api_router = APIRouter()

api_router.include_router(query.router)

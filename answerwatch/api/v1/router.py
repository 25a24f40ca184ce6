from fastapi import APIRouter

from answerwatch.api.v1.executions import router as executions_router

api_v1_router = APIRouter(prefix="/api/v1")
api_v1_router.include_router(executions_router)

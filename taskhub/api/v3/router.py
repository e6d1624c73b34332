from fastapi import APIRouter
from taskhub.api.v3 import queries, work_packages

router = APIRouter()
router.include_router(queries.router, prefix="/queries", tags=["Queries"])
router.include_router(work_packages.router, prefix="/work_packages", tags=["WorkPackages"])

from fastapi import APIRouter, Depends

from felis.orm.store import SessionStore
from felis.routes.session import get_store
from felis.schemes.session import HealthOut

router = APIRouter(prefix="/api", tags=["health"])


@router.get("/healthcheck", response_model=HealthOut)
async def healthcheck(store: SessionStore = Depends(get_store)):
    """Always 200, the database state is reported in the body."""
    result = await store.ping()
    return HealthOut(status=result.status, message=result.message)

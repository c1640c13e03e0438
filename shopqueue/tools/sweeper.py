from fastapi import APIRouter, Depends

from shopqueue.dependencies.services import get_sweeper
from shopqueue.services import ExpirationSweeper
from shopqueue.services.exceptions import ServiceError
from shopqueue.services.sweeper import SweepResult
from shopqueue.tools.errors import to_http_exception

router = APIRouter()


@router.post("/run", response_model=SweepResult)
async def run_sweep(sweeper: ExpirationSweeper = Depends(get_sweeper)):
    try:
        return await sweeper.sweep()
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

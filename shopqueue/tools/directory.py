from fastapi import APIRouter, Depends

from shopqueue.dependencies.services import get_directory_service
from shopqueue.schemas.directory import DirectoryResponse
from shopqueue.services.directory import DirectoryService
from shopqueue.services.exceptions import ServiceError
from shopqueue.tools.errors import to_http_exception

router = APIRouter()


@router.get("", response_model=DirectoryResponse)
async def list_directory(
    include_resting: bool = True,
    service: DirectoryService = Depends(get_directory_service),
):
    try:
        return DirectoryResponse(
            providers=await service.list_providers(include_resting=include_resting),
            services=await service.list_services(),
        )
    except ServiceError as exc:
        raise to_http_exception(exc) from exc

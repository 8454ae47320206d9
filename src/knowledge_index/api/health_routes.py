from typing import Annotated

from fastapi import APIRouter, Depends

from .dependencies import get_container
from ..container import Container

router = APIRouter(tags=["health"])


@router.get("/health")
def health(container: Annotated[Container, Depends(get_container)]):
    return {
        "status": "ok",
        "storage_backend": container.backend,
        "workers_running": container.workers.running,
        "queue_size": container.queue.qsize(),
    }

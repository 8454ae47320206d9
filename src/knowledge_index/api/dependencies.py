from typing import Annotated

from fastapi import Depends, Request

from ..container import Container
from ..ingestion.service import IngestionService
from ..search.hybrid import HybridSearchEngine


def get_container(request: Request) -> Container:
    return request.app.state.container


def get_ingestion_service(
    container: Annotated[Container, Depends(get_container)],
) -> IngestionService:
    return container.ingestion


def get_search_engine(
    container: Annotated[Container, Depends(get_container)],
) -> HybridSearchEngine:
    return container.search

"""
CRUD router factory.

Builds index/show/store/update/destroy endpoints for one model on top of a
BaseModelService. Payloads are nested JSON objects handled by the entity
editor; failures are AppExceptions rendered by FastAPI.

Usage:
    from basemodel.routers.crud import build_crud_router

    app.include_router(
        build_crud_router(Order, OrderService, prefix="/orders", tags=["orders"]),
    )

Endpoints:
    GET    /            paginated list (see QueryParameters for the grammar)
    GET    /{id}        one entity, ``include`` supported
    POST   /            create (every validation rule required)
    PUT    /{id}        update (partial validation)
    PATCH  /{id}        update (partial validation)
    DELETE /{id}        delete
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from fastapi import APIRouter, Body, Depends, Request, Response, status
from sqlalchemy.orm import Session

from basemodel_shared.infrastructure.db import get_db
from basemodel_shared.security.decryption import DecryptionKeyProvider, decryption_key_dependency

from basemodel.services.base_service import BaseModelService
from basemodel.services.crud.context import LoadTree, load_paths
from basemodel.services.crud.descriptors import ModelRegistry, default_registry
from basemodel.services.query.assembler import entity_to_dict
from basemodel.services.query.parameters import QueryParameters

ServiceFactory = Callable[[Session], BaseModelService]


def build_crud_router(
    model: type,
    service_factory: ServiceFactory | None = None,
    *,
    prefix: str = "",
    tags: list[str] | None = None,
    registry: ModelRegistry = default_registry,
    session_dependency: Callable[..., Any] = get_db,
    decryption_provider: DecryptionKeyProvider | None = None,
) -> APIRouter:
    """
    Router with the five CRUD endpoints of ``model``.

    Args:
        model: Mapped model class.
        service_factory: Builds the service from a Session; defaults to a
            plain BaseModelService.
        prefix: Router prefix, e.g. ``/orders``.
        tags: OpenAPI tags.
        registry: Model configuration registry.
        session_dependency: FastAPI dependency yielding a Session.
        decryption_provider: Resolves the per-request decryption key.
    """
    router = APIRouter(prefix=prefix, tags=tags or [model.__name__.lower()])
    decryption_key = decryption_key_dependency(decryption_provider)

    def get_service(db: Session = Depends(session_dependency)) -> BaseModelService:
        if service_factory is not None:
            return service_factory(db)
        return BaseModelService(db, model, registry=registry)

    def serialize(entity: Any, includes: list[str]) -> dict[str, Any]:
        return entity_to_dict(entity, includes)

    @router.get("/")
    def index(
        request: Request,
        service: BaseModelService = Depends(get_service),
        key: str | None = Depends(decryption_key),
    ) -> dict[str, Any]:
        """List entities with filters, searches, sorting, pagination and includes."""
        params = QueryParameters.from_request(model, request.query_params, registry, decryption_key=key)
        page = service.list(params)
        base_url = str(request.url.remove_query_params("page"))
        return page.to_dict(base_url, serializer=lambda entity: serialize(entity, params.includes))

    @router.get("/{entity_id}")
    def show(
        entity_id: int,
        request: Request,
        service: BaseModelService = Depends(get_service),
        key: str | None = Depends(decryption_key),
    ) -> dict[str, Any]:
        """Get one entity; ``include`` loads relations."""
        params = QueryParameters.from_request(model, request.query_params, registry, decryption_key=key)
        entity = service.get(entity_id, params)
        return serialize(entity, params.includes)

    @router.post("/", status_code=status.HTTP_201_CREATED)
    def store(
        payload: dict[str, Any] = Body(...),
        service: BaseModelService = Depends(get_service),
    ) -> dict[str, Any]:
        """Create an entity from a nested payload."""
        tree: LoadTree = {}
        entity = service.create(payload, relations_to_load=tree)
        return serialize(entity, load_paths(tree))

    @router.api_route("/{entity_id}", methods=["PUT", "PATCH"])
    def update(
        entity_id: int,
        payload: dict[str, Any] = Body(...),
        service: BaseModelService = Depends(get_service),
    ) -> dict[str, Any]:
        """Update an entity from a nested payload."""
        tree: LoadTree = {}
        entity = service.update(entity_id, payload, relations_to_load=tree)
        return serialize(entity, load_paths(tree))

    @router.delete("/{entity_id}", status_code=status.HTTP_204_NO_CONTENT)
    def destroy(
        entity_id: int,
        service: BaseModelService = Depends(get_service),
    ) -> Response:
        """Delete an entity."""
        service.delete(entity_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    return router

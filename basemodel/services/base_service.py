"""
Base service for models managed by the entity editor.

Architecture:
    Router (thin) -> BaseModelService -> EntityEditor / QueryAssembler / BaseRepository -> Model

Usage:
    from basemodel.services.base_service import BaseModelService

    class OrderService(BaseModelService[Order]):
        def __init__(self, db: Session):
            super().__init__(db=db, model=Order, entity_name="Order")

        def _after_create(self, entity: Order) -> None:
            notify_warehouse(entity.id)

    order = OrderService(db).create({"customer_id": 9, "items": [{"sku": "A", "qty": 2}]})
"""

from __future__ import annotations

from typing import Any, Generic, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from basemodel_shared.config.logging import get_logger
from basemodel_shared.infrastructure.transactions import TransactionManager
from basemodel_shared.utils.exceptions import NotFoundError, ValidationError
from basemodel_shared.utils.sql_errors import classify_sql_error

from basemodel.models.base import Base
from basemodel.repositories.base import BaseRepository
from basemodel.services.crud.context import LoadTree
from basemodel.services.crud.descriptors import ModelRegistry, default_registry
from basemodel.services.crud.editor import EntityEditor
from basemodel.services.crud.relation_kinds import primary_key_of
from basemodel.services.query.assembler import Page, QueryAssembler
from basemodel.services.query.parameters import QueryParameters

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=Base)


class BaseModelService(Generic[ModelT]):
    """
    CRUD operations for one model.

    Writes go through the EntityEditor (nested payloads, one transaction,
    BulkValidationError on failure); reads go through the QueryAssembler.
    """

    def __init__(
        self,
        db: Session,
        model: type[ModelT],
        entity_name: str | None = None,
        *,
        registry: ModelRegistry = default_registry,
    ):
        self._db = db
        self._model = model
        self._entity_name = entity_name or model.__name__
        self._registry = registry
        self._repo = BaseRepository(model, db)
        self._editor = EntityEditor(db, registry)
        self._assembler = QueryAssembler(db, registry)

    @property
    def db(self) -> Session:
        return self._db

    @property
    def repo(self) -> BaseRepository[ModelT]:
        return self._repo

    @property
    def editor(self) -> EntityEditor:
        return self._editor

    @property
    def entity_name(self) -> str:
        """Name used in log lines and not-found messages."""
        return self._entity_name

    # =========================================================================
    # Read Operations
    # =========================================================================

    def get(self, entity_id: Any, params: QueryParameters | None = None) -> ModelT:
        """
        Get entity by ID with the includes and filters of ``params``.

        Raises:
            NotFoundError: If entity not found (or filtered out).
            RelationNotFoundError: If an include is not a relation.
        """
        entity = self._assembler.find_extended(self._model, entity_id, params)
        if entity is None:
            raise NotFoundError(self._entity_name, entity_id)
        return entity

    def list(self, params: QueryParameters | None = None) -> Page:
        """One page of entities matching ``params``."""
        return self._assembler.paginate(self._model, params)

    # =========================================================================
    # Write Operations
    # =========================================================================

    def create(self, payload: dict[str, Any], relations_to_load: LoadTree | None = None) -> ModelT:
        """
        Create an entity (and its related entities) from a nested payload.

        Raises:
            BulkValidationError: With every problem found in the payload.
        """
        self._validate_create(payload)
        entity = self._registry.new_instance(self._model)
        self._editor.edit_entity(
            entity,
            payload,
            check_completion=True,
            relations_to_load=relations_to_load,
        )
        logger.info(f"{self._entity_name} created", entity_id=primary_key_of(entity))
        self._after_create(entity)
        return entity

    def update(
        self, entity_id: Any, payload: dict[str, Any], relations_to_load: LoadTree | None = None
    ) -> ModelT:
        """
        Update an entity from a (partial) nested payload.

        Raises:
            NotFoundError: If entity not found.
            BulkValidationError: With every problem found in the payload.
        """
        entity = self._repo.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self._entity_name, entity_id)

        self._validate_update(entity, payload)
        self._editor.edit_entity(
            entity,
            payload,
            check_completion=False,
            relations_to_load=relations_to_load,
        )
        logger.info(f"{self._entity_name} updated", entity_id=entity_id)
        self._after_update(entity, payload)
        return entity

    def delete(self, entity_id: Any) -> None:
        """
        Delete an entity.

        Raises:
            NotFoundError: If entity not found.
            ValidationError: If the database refuses the deletion.
        """
        entity = self._repo.find_by_id(entity_id)
        if entity is None:
            raise NotFoundError(self._entity_name, entity_id)

        self._validate_delete(entity)
        entity_info = self._deleted_entity_info(entity)

        tm = TransactionManager.for_session(self._db)
        try:
            with tm.transaction():
                self._repo.delete(entity)
        except DBAPIError as exc:
            classified = classify_sql_error(exc, self._model.__name__)
            raise ValidationError(classified.message, entity_id=entity_id)

        logger.info(f"{self._entity_name} deleted", entity_id=entity_id)
        self._after_delete(entity_info)

    # =========================================================================
    # Pre-write checks (override in subclasses)
    # =========================================================================

    def _validate_create(self, payload: dict[str, Any]) -> None:
        """Reject a create payload by raising an AppException."""
        pass

    def _validate_update(self, entity: ModelT, payload: dict[str, Any]) -> None:
        pass

    def _validate_delete(self, entity: ModelT) -> None:
        """Refuse deletion here, e.g. when dependent rows must survive."""
        pass

    # =========================================================================
    # Post-commit hooks (override in subclasses)
    # =========================================================================

    def _after_create(self, entity: ModelT) -> None:
        """Runs after the create transaction committed."""
        pass

    def _after_update(self, entity: ModelT, payload: dict[str, Any]) -> None:
        """Runs after the update transaction committed."""
        pass

    def _after_delete(self, entity_info: dict[str, Any]) -> None:
        """Runs after the delete committed, with the info captured beforehand."""
        pass

    def _deleted_entity_info(self, entity: ModelT) -> dict[str, Any]:
        """Identity of ``entity`` captured before it is deleted."""
        return {
            "id": primary_key_of(entity),
            "model": self._model.__name__,
            "name": getattr(entity, "name", None),
        }

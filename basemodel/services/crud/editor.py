"""
Entity Edit Orchestrator.

Creates or updates an entity together with the related entities named in a
nested payload, inside one transaction:

    Start -> TxBegin -> FillAttributes -> ManageRequired -> Save(1)
          -> ManageOptional -> ValidateLogic -> LoadRelations -> Save(2)
          -> Commit | Rollback

Every problem found anywhere in the graph is collected in one ErrorBag. The
edit either commits the whole graph or rolls it back and raises a single
BulkValidationError listing every message.

Usage:
    editor = EntityEditor(db, registry)
    order = editor.edit_entity(
        Order(),
        {"status": "paid", "customer_id": 9, "items": [{"sku": "A", "qty": 2}]},
    )
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from basemodel_shared.config.constants import ErrorKeys
from basemodel_shared.config.logging import get_logger
from basemodel_shared.infrastructure.transactions import TransactionManager
from basemodel_shared.utils.exceptions import (
    BulkValidationError,
    FieldValidationError,
    RelationNotFoundError,
)
from basemodel_shared.utils.sql_errors import classify_sql_error

from basemodel.services.crud.context import (
    EditContext,
    LoadTree,
    ParentLink,
    merge_load_trees,
)
from basemodel.services.crud.descriptors import ModelRegistry, default_registry
from basemodel.services.crud.filler import set_object_attributes
from basemodel.services.crud.reconciler import RelationReconciler, split_payload

logger = get_logger(__name__)


class EntityEditor:
    """
    Recursive, transaction-scoped editor for entity graphs.

    One editor is bound to one Session; the session's TransactionManager
    tracks nesting across recursive edits.
    """

    def __init__(self, session: Session, registry: ModelRegistry = default_registry):
        self.session = session
        self.registry = registry
        self.reconciler = RelationReconciler(self)

    @property
    def transactions(self) -> TransactionManager:
        return TransactionManager.for_session(self.session)

    def edit_entity(
        self,
        entity: Any,
        payload: Mapping[str, Any],
        check_completion: bool = True,
        manage_transaction: bool = True,
        relations_to_load: LoadTree | None = None,
    ) -> Any:
        """
        Fill, reconcile and persist ``entity`` from ``payload``.

        Args:
            entity: New or persistent mapped instance.
            payload: Nested mapping of attributes and relation fragments.
            check_completion: Every validation rule requires a value (new entities).
            manage_transaction: Begin and commit (or roll back) a transaction
                level around the edit.
            relations_to_load: Relations to load on the returned entity; also
                receives the tree of relations touched by the edit, which are
                loaded as well.

        Returns:
            The edited entity.

        Raises:
            BulkValidationError: With every message collected at every level.
            RelationNotFoundError: A relation to load is not defined.
        """
        ctx = EditContext()
        tree = self._edit(
            entity,
            payload,
            ctx,
            check_completion=check_completion,
            manage_transaction=manage_transaction,
            relations_to_load=relations_to_load,
        )
        if relations_to_load is not None:
            merge_load_trees(relations_to_load, tree)
        return entity

    # =========================================================================
    # Recursive edit
    # =========================================================================

    def _edit(
        self,
        entity: Any,
        payload: Mapping[str, Any],
        ctx: EditContext,
        check_completion: bool = False,
        manage_transaction: bool = False,
        parent: ParentLink | None = None,
        relations_to_load: LoadTree | None = None,
    ) -> LoadTree:
        """
        Edit one entity of the graph and return the tree of relations it touched.

        A nested edit (``parent`` set) opens its own savepoint when an
        enclosing transaction exists, so its failure is undone without
        undoing its siblings. The outermost edit loads ``relations_to_load``
        together with the touched relations before its final save.
        """
        model = type(entity)
        model_name = model.__name__
        tm = self.transactions
        owns_transaction = manage_transaction or (parent is not None and tm.depth > 0)
        marker = ctx.errors.count()
        tree: LoadTree = {}

        if owns_transaction:
            tm.begin()

        try:
            attributes, relations = split_payload(self.registry, model, payload)

            set_object_attributes(
                entity,
                attributes,
                self.registry.validation_rules(model),
                self.registry,
                check_completion=check_completion,
            )

            merge_load_trees(tree, self.reconciler.manage_required(entity, relations, ctx, parent))
            self._save(entity)

            merge_load_trees(tree, self.reconciler.manage_optional(entity, relations, ctx, parent))

            entity.validate_attribute_logic()

            if ctx.depth == 0:
                to_load = merge_load_trees(merge_load_trees({}, relations_to_load or {}), tree)
                if to_load:
                    self._load_relations(entity, to_load)

            self._save(entity)
        except DBAPIError as exc:
            classified = classify_sql_error(exc, model_name)
            ctx.errors.add(classified.key, classified.message)
        except BulkValidationError as exc:
            ctx.errors.merge(exc.errors)
        except FieldValidationError as exc:
            for key, messages in exc.messages.items():
                ctx.errors.extend(key, messages)
        except RelationNotFoundError:
            if owns_transaction:
                tm.rollback()
            raise
        except Exception as exc:
            logger.debug("Unclassified edit failure", model=model_name, exc_info=True)
            ctx.errors.add(ErrorKeys.GENERAL, str(exc))

        if ctx.errors.count() > marker:
            if owns_transaction:
                tm.rollback()
            raise BulkValidationError(
                ctx.errors,
                log_level="debug" if ctx.depth else "warning",
                model=model_name,
            )

        if owns_transaction:
            self._commit(tm, ctx, model_name)
        return tree

    def _commit(self, tm: TransactionManager, ctx: EditContext, model_name: str) -> None:
        root = tm.depth == 1
        try:
            tm.commit()
        except DBAPIError as exc:
            classified = classify_sql_error(exc, model_name)
            ctx.errors.add(classified.key, classified.message)
            if root:
                self.session.rollback()
            raise BulkValidationError(ctx.errors, model=model_name) from exc
        if root:
            logger.debug("Entity committed", model=model_name)

    # =========================================================================
    # Persistence
    # =========================================================================

    def _save(self, entity: Any) -> None:
        self.session.add(entity)
        self.session.flush()

    def _load_relations(self, entity: Any, tree: LoadTree) -> None:
        """Load every relation of ``tree`` (multi level) onto ``entity``."""
        self.session.flush()
        self._load_level([entity], tree)

    def _load_level(self, entities: list[Any], tree: LoadTree) -> None:
        for name, subtree in tree.items():
            children: list[Any] = []
            for entity in entities:
                if not self.registry.has_relationship(type(entity), name):
                    raise RelationNotFoundError(name, type(entity).__name__)
                value = getattr(entity, name)
                if value is None:
                    continue
                children.extend(value if isinstance(value, list) else [value])
            if subtree and children:
                self._load_level(children, subtree)

"""
basemodel - nested CRUD, relation reconciliation and query assembly for
SQLAlchemy models.

Structure:
- models: declarative Base and the BaseModelMixin hooks
- services.crud: relationship descriptors, entity editor, audit hooks
- services.query: QueryParameters and the QueryAssembler
- services.base_service: BaseModelService (CRUD facade)
- repositories: BaseRepository
- routers: FastAPI CRUD router factory
"""

__version__ = "0.1.0"

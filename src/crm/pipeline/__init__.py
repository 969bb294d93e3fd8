"""Sales pipeline module -- stages, contacts, properties, and the kanban board.

Provides SQLAlchemy models (Stage, Contact, Property), Pydantic schemas,
PipelineRepository for user-scoped async persistence, and the services the
API layer drives: StageStore, BoardController (with SaleRecorder),
ContactService, PropertyService, and DashboardService.
"""

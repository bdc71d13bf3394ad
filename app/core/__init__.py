"""
Core Application - shared infrastructure for the booking and payment apps.

Nothing in here knows about trips, offers or payments. Domain apps build on
these pieces:

Models (import from core.models):
    - BaseModel: Abstract model with timestamps (created_at, updated_at)

Model Mixins (import from core.model_mixins):
    - UUIDPrimaryKeyMixin: UUID as primary key

Services (import from core.services):
    - BaseService: Base class for the service layer
    - ServiceResult: Result wrapper for expected success/failure outcomes

Exceptions (import from core.exceptions):
    - BaseApplicationError and its NotFound/Conflict/Validation/... subclasses,
      each carrying the HTTP status the API layer answers with

Views (import from core.views):
    - health_check: Liveness/readiness endpoint
"""

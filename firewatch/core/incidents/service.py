# firewatch/core/incidents/service.py
"""
Incident application service: the single orchestration point for all
incident commands and queries.

Responsibilities:
    1. Validate commands (via Pydantic models)
    2. Stamp timestamps from the injected clock
    3. Call the repository for persistence
    4. Log and count every mutation

Store errors reach the caller as-is: no retries, no partial commits.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Mapping, Optional

from pydantic import ValidationError as PydanticValidationError

from firewatch.core.errors import ValidationError, NotFoundError, from_pydantic
from firewatch.core.incidents.domain import Incident, IncidentStatus
from firewatch.core.incidents.models import CreateIncidentRequest, UpdateIncidentRequest
from firewatch.core.incidents.ports import AsyncIncidentRepository
from firewatch.infra.logging_config import get_logger, LogContext, mask_coordinates
from firewatch.infra.metrics import AppMetrics

logger = get_logger(__name__)

_VALID_STATUSES = frozenset(s.value for s in IncidentStatus)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _from_pydantic(exc: PydanticValidationError) -> ValidationError:
    err = exc.errors()[0]
    loc = err.get("loc") or ()
    if loc and loc[0] in ("latitude", "longitude") and err.get("type") in ("missing", "float_type"):
        return ValidationError("Latitude and longitude are required", field=str(loc[0]))
    return from_pydantic(exc)


class IncidentService:
    """
    Incident store contract on top of an async repository.

    Stateless apart from the injected repository; one instance is shared
    across requests.
    """

    def __init__(
        self,
        repo: AsyncIncidentRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repo = repo
        self._clock = clock

    @property
    def repo(self) -> AsyncIncidentRepository:
        return self._repo

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def create(self, attributes: Mapping[str, Any] | CreateIncidentRequest) -> Incident:
        """
        Validate, fill defaults, stamp both timestamps and persist.

        Raises ValidationError (nothing persisted) on missing/out-of-range
        coordinates or out-of-enum values.
        """
        req = self._parse(CreateIncidentRequest, attributes, "create")

        now = self._clock()
        incident = await self._repo.insert(req.attributes(), now)

        AppMetrics.incident_created(incident.status)
        LogContext(logger, incident_id=incident.id).info(
            f"Incident created: status={incident.status}, "
            f"at={mask_coordinates(incident.latitude, incident.longitude)}"
        )
        return incident

    async def update(
        self,
        incident_id: int,
        partial: Mapping[str, Any] | UpdateIncidentRequest,
    ) -> Incident:
        """
        Apply allow-listed fields only.  Unknown and immutable keys are
        ignored, but an update left with nothing to apply is rejected.
        """
        req = self._parse(UpdateIncidentRequest, partial, "update")
        changes = req.changes()
        if not changes:
            AppMetrics.validation_failed("update")
            raise ValidationError("No valid fields to update")

        updated = await self._repo.update(incident_id, changes, self._clock())
        if updated is None:
            raise NotFoundError(f"Incident {incident_id} not found")

        AppMetrics.incident_updated()
        LogContext(logger, incident_id=incident_id).info(
            f"Incident updated: fields={sorted(changes)}"
        )
        return updated

    async def delete(self, incident_id: int) -> None:
        if not await self._repo.delete(incident_id):
            raise NotFoundError(f"Incident {incident_id} not found")

        AppMetrics.incident_deleted()
        LogContext(logger, incident_id=incident_id).info("Incident deleted")

    async def delete_all(self) -> int:
        """Remove every incident. Returns the number removed (0 on an empty store)."""
        removed = await self._repo.delete_all()
        if removed:
            AppMetrics.incident_deleted(removed)
        logger.warning(f"All incidents deleted: count={removed}")
        return removed

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get(self, incident_id: int) -> Incident:
        incident = await self._repo.fetch(incident_id)
        if incident is None:
            raise NotFoundError(f"Incident {incident_id} not found")
        return incident

    async def list(self, status: Optional[str] = None) -> list[Incident]:
        """All incidents, optionally by status, most recently detected first."""
        return await self._repo.fetch_all(self._check_status(status))

    async def count(self, status: Optional[str] = None) -> int:
        return await self._repo.count(self._check_status(status))

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _check_status(status: Optional[str]) -> Optional[str]:
        if status is None:
            return None
        if isinstance(status, IncidentStatus):
            return status.value
        if status not in _VALID_STATUSES:
            raise ValidationError(
                f"Invalid status (must be one of {', '.join(sorted(_VALID_STATUSES))})",
                field="status",
            )
        return status

    @staticmethod
    def _parse(model: type, payload: Any, operation: str):
        if isinstance(payload, model):
            return payload
        if not isinstance(payload, Mapping):
            AppMetrics.validation_failed(operation)
            raise ValidationError("Request body must be a JSON object")
        try:
            return model.model_validate(dict(payload))
        except PydanticValidationError as exc:
            AppMetrics.validation_failed(operation)
            raise _from_pydantic(exc)

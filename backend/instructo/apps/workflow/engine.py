from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import update
from sqlalchemy.orm import Session

from instructo.apps.audit import services as audit_services
from instructo.errors import InvalidTransition, ValidationError

from .registry import WORKFLOWS

logger = logging.getLogger(__name__)


def _state(value: Any) -> str:
    if isinstance(value, enum.Enum):
        return str(value.value)
    return str(value)


def _jsonable(payload: Dict[str, Any]) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key, value in payload.items():
        if isinstance(value, enum.Enum):
            value = value.value
        elif hasattr(value, "isoformat"):
            value = value.isoformat()
        out[key] = value
    return out


def ensure_transition(entity_type: str, from_state: Any, to_state: Any) -> None:
    """Raise InvalidTransition unless `from_state -> to_state` is registered."""
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise InvalidTransition(
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )
    allowed = workflow.get("transitions", {}).get(_state(from_state), {})
    if _state(to_state) not in allowed:
        raise InvalidTransition(
            f"Cannot transition {entity_type} from {_state(from_state)} to {_state(to_state)}",
            detail=[
                {
                    "field": "status",
                    "reason": f"Cannot transition from {_state(from_state)} to {_state(to_state)}",
                }
            ],
        )


def apply_transition(
    db: Session,
    *,
    actor_user_id: Optional[str],
    entity_type: str,
    entity_id: str,
    from_state: Any,
    to_state: Any,
    before_obj: Any = None,
    after_obj: Any = None,
    actor_role: Optional[str] = None,
    critical: bool = True,
) -> None:
    """
    Validate a state change against the registry, run its guards and append
    the audit record. Does not write the entity itself; callers follow up
    with `compare_and_set_status` inside the same transaction.
    """
    from_value, to_value = _state(from_state), _state(to_state)
    ensure_transition(entity_type, from_value, to_value)

    guards = WORKFLOWS[entity_type]["transitions"][from_value][to_value]
    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_value,
                to_state=to_value,
            )
        )

    if failures:
        raise ValidationError("Missing requirements for transition", detail=failures)

    before_payload: Dict[str, Any] = {"status": from_value}
    after_payload: Dict[str, Any] = {"status": to_value}
    if isinstance(before_obj, dict):
        before_payload.update(_jsonable(before_obj))
    if isinstance(after_obj, dict):
        after_payload.update(_jsonable(after_obj))
    before_payload["status"] = from_value
    after_payload["status"] = to_value

    audit_services.log_event(
        db,
        actor_user_id=actor_user_id,
        actor_role=actor_role,
        entity_type=entity_type,
        entity_id=entity_id,
        action="transition",
        before=before_payload,
        after=after_payload,
        metadata={"workflow": entity_type},
        critical=critical,
    )
    logger.info(
        "Workflow transition %s %s: %s -> %s",
        entity_type,
        entity_id,
        from_value,
        to_value,
        extra={"actor_user_id": actor_user_id},
    )


def compare_and_set_status(
    db: Session,
    model: Type[Any],
    *,
    entity_id: str,
    from_state: Any,
    to_state: Any,
    values: Optional[Dict[str, Any]] = None,
) -> None:
    """
    Atomically move one row from `from_state` to `to_state`.

    The status check and the write are a single UPDATE, so a concurrent
    writer that got there first leaves zero matching rows and the caller
    gets InvalidTransition instead of silently overwriting.
    """
    stmt = (
        update(model)
        .where(model.id == entity_id, model.status == from_state)
        .values(status=to_state, **(values or {}))
        .execution_options(synchronize_session=False)
    )
    result = db.execute(stmt)
    if result.rowcount != 1:
        raise InvalidTransition(
            "Record was changed by another request",
            detail=[{"field": "status", "reason": f"expected {_state(from_state)}"}],
        )

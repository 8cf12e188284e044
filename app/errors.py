"""Typed errors raised by the stock ledger services.

Every error carries a machine-readable ``code`` plus structured fields, so
callers branch on the type (or the code) instead of parsing messages.  The
base class derives from ``ValueError`` to keep the router convention of
turning service ``ValueError``s into HTTP errors.

    StockLedgerError
    +-- ValidationError        rejected before any write
    +-- NotFoundError          unknown component / transaction / list / order
    +-- MissingInventory       no snapshot for a component being issued against
    +-- InvalidTransition      picking list is not in a state that allows the call
    +-- MutationFailure        the atomic ledger + snapshot write did not apply
    +-- BatchPartialFailure    some items of a batch or picking list failed
"""

from __future__ import annotations

from typing import Any, Iterable


class StockLedgerError(ValueError):
    code = 'STOCK_LEDGER_ERROR'

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {'code': self.code, 'message': self.message}


class ValidationError(StockLedgerError):
    code = 'VALIDATION_ERROR'

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        if self.field:
            data['field'] = self.field
        return data


class NotFoundError(StockLedgerError):
    code = 'NOT_FOUND'

    def __init__(self, entity: str, entity_id: int) -> None:
        super().__init__(f'{entity} {entity_id} not found')
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(entity=self.entity, entity_id=self.entity_id)
        return data


class MissingInventory(StockLedgerError):
    """No snapshot exists yet; create one (``create_snapshot``) and retry."""

    code = 'MISSING_INVENTORY'

    def __init__(self, component_ids: Iterable[int]) -> None:
        ids = tuple(dict.fromkeys(int(value) for value in component_ids))
        joined = ', '.join(str(value) for value in ids)
        super().__init__(f'Missing inventory records for components: {joined}')
        self.component_ids = ids

    @property
    def component_id(self) -> int:
        return self.component_ids[0]

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data['component_ids'] = list(self.component_ids)
        return data


class InvalidTransition(StockLedgerError):
    code = 'INVALID_TRANSITION'

    def __init__(self, *, pending_id: int, current_status: str, attempted: str, reason: str | None = None) -> None:
        message = reason or f'Picking list {pending_id} is {current_status.lower()}; cannot {attempted}'
        super().__init__(message)
        self.pending_id = pending_id
        self.current_status = current_status
        self.attempted = attempted

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(pending_id=self.pending_id, current_status=self.current_status, attempted=self.attempted)
        return data


class MutationFailure(StockLedgerError):
    code = 'MUTATION_FAILURE'

    def __init__(self, message: str, *, component_id: int | None, attempted_delta: int | None) -> None:
        super().__init__(message)
        self.component_id = component_id
        self.attempted_delta = attempted_delta

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(component_id=self.component_id, attempted_delta=self.attempted_delta)
        return data


class BatchPartialFailure(StockLedgerError):
    code = 'BATCH_PARTIAL_FAILURE'

    def __init__(self, *, succeeded: list[dict[str, Any]], failed: list[dict[str, Any]], pending_id: int | None = None) -> None:
        super().__init__(f'{len(failed)} of {len(succeeded) + len(failed)} items failed')
        self.succeeded = succeeded
        self.failed = failed
        self.pending_id = pending_id

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(succeeded=self.succeeded, failed=self.failed)
        if self.pending_id is not None:
            data['pending_id'] = self.pending_id
        return data

from __future__ import annotations

from typing import Any


class RentalDomainError(Exception):
    """Base for every failure the allocation core reports to its callers.

    ``code`` and ``status_code`` are stable: the API layer renders them without
    looking at the message text.
    """

    code = "RentalDomainError"
    status_code = 400

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_payload(self) -> dict:
        payload = {"error": self.code, "detail": self.message}
        payload.update(self.extra)
        return payload


class NotFound(RentalDomainError):
    code = "NotFound"
    status_code = 404

    def __init__(self, entity: str, identifier: str):
        super().__init__(f"{entity} {identifier} not found.", entity=entity, id=identifier)


class UnknownCustomer(NotFound):
    code = "UnknownCustomer"

    def __init__(self, identifier: str):
        super().__init__("Customer", identifier)


class UnknownItem(NotFound):
    code = "UnknownItem"

    def __init__(self, identifier: str):
        super().__init__("Item", identifier)


class UnknownRental(NotFound):
    code = "UnknownRental"

    def __init__(self, identifier: str):
        super().__init__("Rental", identifier)


class ValidationError(RentalDomainError):
    code = "ValidationError"
    status_code = 422


class InsufficientStock(RentalDomainError):
    code = "InsufficientStock"
    status_code = 409

    def __init__(self, item_id: str, item_name: str | None, requested: int, available: int):
        label = item_name or item_id
        super().__init__(
            f"Insufficient stock for {label}: requested {requested}, available {available}.",
            itemID=item_id,
            itemName=item_name,
            requested=requested,
            available=available,
        )
        self.item_id = item_id


class IllegalTransition(RentalDomainError):
    code = "IllegalTransition"
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f"Invalid state transition: {current} -> {target}", current=current, target=target)


class ReferencedByRental(RentalDomainError):
    code = "ReferencedByRental"
    status_code = 409


class RentalHasPayments(RentalDomainError):
    code = "RentalHasPayments"
    status_code = 409


class TransientStoreError(RentalDomainError):
    code = "TransientStoreError"
    status_code = 503


class LedgerCorruption(RentalDomainError):
    code = "LedgerCorruption"
    status_code = 500

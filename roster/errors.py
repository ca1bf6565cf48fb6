"""
Error categories raised by the scheduling core.

Each one is raised before the affected unit of work is mutated; the HTTP layer
maps them onto status codes.
"""

from pydantic import ValidationError


class SchedulingError(Exception):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidInputError(SchedulingError):
    def __init__(
        self, message: str, errors: list[dict[str, str]] | None = None
    ) -> None:
        super().__init__(message)
        self.errors = errors or []

    @classmethod
    def from_validation(cls, exc: ValidationError) -> "InvalidInputError":
        errors = [
            {
                "field": ".".join(str(p) for p in err["loc"]) or "__root__",
                "message": err["msg"],
            }
            for err in exc.errors()
        ]
        return cls("Validation failed", errors)


class PermissionDeniedError(SchedulingError):
    pass


class NotFoundError(SchedulingError):
    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id


class BusinessRuleError(SchedulingError):
    pass


class InvalidTransitionError(BusinessRuleError):
    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.current = current
        self.target = target

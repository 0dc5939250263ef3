from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ServiceError(Exception):
    code: str
    message: str
    details: dict | None = None

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        payload = {
            "code": self.code,
            "message": self.message,
        }
        if self.details:
            payload["details"] = self.details
        return payload


class ValidationError(ServiceError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__("validation_failed", message, details)


class ConflictError(ServiceError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__("conflict", message, details)


class AuthenticationError(ServiceError):
    def __init__(self, message: str = "Invalid credentials", details: dict | None = None) -> None:
        super().__init__("unauthorized", message, details)


class AccessDeniedError(ServiceError):
    def __init__(self, message: str = "Access denied", details: dict | None = None) -> None:
        super().__init__("forbidden", message, details)


class NotFoundError(ServiceError):
    def __init__(self, message: str, details: dict | None = None) -> None:
        super().__init__("not_found", message, details)

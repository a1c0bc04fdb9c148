from typing import Optional


class TagTrackError(Exception):
    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ConfigurationMissing(TagTrackError):
    def __init__(self, missing: list, service: str = "record store"):
        message = f"{service} configuration missing ({', '.join(missing)})"
        super().__init__(message)
        self.missing = list(missing)
        self.service = service


class NetworkError(TagTrackError):
    """Transport failure; safe for the caller to retry."""


class StoreError(TagTrackError):
    def __init__(self, status_code: int, body: str = ""):
        super().__init__(f"Record store error: {status_code} - {body}", details=body)
        self.status_code = status_code
        self.body = body


class InvalidEpc(TagTrackError):
    def __init__(self, epc: str):
        super().__init__(f"Invalid EPC: {epc!r}")
        self.epc = epc


class InvalidStation(TagTrackError):
    def __init__(self, station: str):
        super().__init__(f"Invalid station: {station!r}")
        self.station = station


class TagNotFound(TagTrackError):
    def __init__(self, epc: str, hint: str = "Encode it first."):
        message = f"Tag {epc} not found."
        if hint:
            message = f"{message} {hint}"
        super().__init__(message)
        self.epc = epc


class DuplicateEpc(TagTrackError):
    def __init__(self, epc: str, linked_to: Optional[str] = None):
        message = f"EPC {epc} already exists in the system"
        if linked_to:
            message = f"{message} (linked to {linked_to})"
        super().__init__(message)
        self.epc = epc
        self.linked_to = linked_to


class NotABox(TagTrackError):
    def __init__(self, epc: str):
        super().__init__(f"{epc} is not a box tag")
        self.epc = epc


class PersistenceFailure(TagTrackError):
    def __init__(self, epc: str, cause: TagTrackError):
        super().__init__(f"Failed to persist scan for {epc}: {cause.message}", details=cause.details)
        self.epc = epc
        self.cause = cause


__all__ = [
    'TagTrackError',
    'ConfigurationMissing',
    'NetworkError',
    'StoreError',
    'InvalidEpc',
    'InvalidStation',
    'TagNotFound',
    'DuplicateEpc',
    'NotABox',
    'PersistenceFailure',
]

from typing import Optional


class CragSearchError(Exception):
    """Base class for recoverable engine errors. None of them are fatal."""


class StoreUnavailable(CragSearchError):
    """The remote catalog store failed for one entity kind (or one lookup)."""

    def __init__(self, kind: str, reason: str = "store request failed"):
        self.kind = kind
        self.reason = reason
        super().__init__(f"{kind}: {reason}")


class LocationUnavailable(CragSearchError):
    """The user's position could not be resolved (denied, not found, backend down)."""

    def __init__(self, reason: str, code: Optional[str] = None):
        self.reason = reason
        self.code = code or "LOCATION_UNAVAILABLE"
        super().__init__(reason)


class InvalidGeometry(CragSearchError):
    """A ring with fewer than 3 valid points. Only raised when finalizing a drawn boundary."""

    def __init__(self, valid_points: int):
        self.valid_points = valid_points
        super().__init__(f"Boundary needs at least 3 valid points, got {valid_points}")

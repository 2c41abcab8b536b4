"""Error taxonomy shared by the pipeline, services and API.

The API layer maps each class onto an HTTP status in santavid.api.app.
"""

from typing import Optional


class SantaVidError(Exception):
    """Base class for all domain errors."""


class ValidationError(SantaVidError):
    """Malformed or missing input. Raised before any state is mutated."""


class NotFound(SantaVidError):
    """Unknown order or child."""


class Unauthorized(SantaVidError):
    """Caller does not own the order (or presented no identity)."""


class ConfigurationError(SantaVidError):
    """A collaborator was used without the credentials it needs."""


class ExternalGenerationFailure(SantaVidError):
    """A generator reported failure for one stage.

    `failures` maps scene number to the per-scene error text when the failure
    was aggregated across scenes.
    """

    def __init__(self, stage: str, message: str, failures: Optional[dict[int, str]] = None):
        self.stage = stage
        self.failures = dict(failures or {})
        super().__init__(message)

    @classmethod
    def aggregate(cls, stage: str, failures: dict[int, str]) -> "ExternalGenerationFailure":
        detail = "; ".join(f"scene {n}: {err}" for n, err in sorted(failures.items()))
        noun = "scene" if len(failures) == 1 else "scenes"
        return cls(stage, f"{stage} failed for {len(failures)} {noun}: {detail}", failures)


class Timeout(ExternalGenerationFailure):
    """Scene video operations that never resolved within the poll bounds."""


class StorageFailure(SantaVidError):
    """Upload or persistence failure while producing the final video."""


class SegmentFetchFailed(StorageFailure):
    """A segment could not be downloaded before stitching."""

    def __init__(self, url: str, reason: str):
        self.url = url
        super().__init__(f"Failed to fetch segment {url}: {reason}")


class InvalidTransition(SantaVidError):
    """The order state machine rejected a requested transition."""

    def __init__(self, order_id, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} cannot move from '{current}' to '{requested}'"
        )

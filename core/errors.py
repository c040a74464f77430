"""Exception hierarchy shared by the creation pipeline and the world layer."""


class WorldsmithError(Exception):
    """Base class for all errors raised by this package."""


class GenerationError(WorldsmithError):
    """A call to the generative backend failed or returned unusable data."""


class MetadataGenerationError(GenerationError):
    """The structured metadata stage failed; the entity cannot exist."""


class AttributeGenerationError(GenerationError):
    """The attribute stage failed. Callers degrade to an empty attribute set."""


class ImageGenerationError(GenerationError):
    """The image stage failed for a reason other than a safety block."""


class SafetyBlockedError(ImageGenerationError):
    """The image backend refused the prompt on content-safety grounds.

    Recoverable: callers may retry with a softened prompt or accept a
    placeholder image.
    """

    def __init__(self, message: str, reason: str = ""):
        super().__init__(message)
        self.reason = reason


class PlanningError(GenerationError):
    """The world planner could not produce a usable plan."""


class RegistryError(WorldsmithError):
    """Base class for spatial registry errors."""


class DuplicateEntityError(RegistryError, ValueError):
    """An entity with the same id is already registered for that kind."""


class RegistryConsistencyError(RegistryError):
    """Bucket index and flat registries diverged. Always a programming defect."""

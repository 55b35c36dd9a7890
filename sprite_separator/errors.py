"""
Exception types raised by the sprite separation pipeline.
"""


class SpriteSeparationError(Exception):
    """Base class for all sprite separation errors."""


class ImageDecodeError(SpriteSeparationError, ValueError):
    """The input could not be decoded into a raster image."""


class InvalidBoundsError(SpriteSeparationError, ValueError):
    """Requested bounds have no area once clamped to the image."""


class StageError(SpriteSeparationError):
    """An analyzer or collaborator failed during a detection stage."""

    def __init__(self, stage: str, message: str):
        super().__init__(f"{stage}: {message}")
        self.stage = stage


class DeadlineExceeded(StageError):
    """The processing budget ran out before the stage finished."""

    def __init__(self, stage: str, budget: float):
        super().__init__(stage, f"processing budget of {budget:.2f}s exceeded")
        self.budget = budget

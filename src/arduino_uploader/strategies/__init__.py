"""Upload strategies, one per bootloader protocol."""

from .base import (
    CallbackPrompt,
    FlashOptions,
    FlashOutcome,
    ProgressReporter,
    UploadStrategy,
    UserPrompt,
)
from .bossa import BossaStrategy
from .esptool import EspToolStrategy

__all__ = [
    "CallbackPrompt",
    "FlashOptions",
    "FlashOutcome",
    "ProgressReporter",
    "UploadStrategy",
    "UserPrompt",
    "BossaStrategy",
    "EspToolStrategy",
]

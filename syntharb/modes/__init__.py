"""Execution modes for trade intents."""

from syntharb.modes.base import BaseExecutor
from syntharb.modes.shadow import ShadowExecutor
from syntharb.modes.callback import CallbackExecutor, create_executor

__all__ = [
    "BaseExecutor",
    "ShadowExecutor",
    "CallbackExecutor",
    "create_executor",
]

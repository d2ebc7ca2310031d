"""Streaming session management (normalizer, state machine, trace, controller)."""

from .controller import SubmissionController
from .normalizer import normalize
from .state_machine import ResearchSession
from .trace import DebugTraceRecorder

__all__ = ["DebugTraceRecorder", "ResearchSession", "SubmissionController", "normalize"]

"""Engine module for capture orchestration."""

from itemize_sync.engine.orchestrator import CaptureOrchestrator, UploadResult

__all__ = ["CaptureOrchestrator", "UploadResult"]

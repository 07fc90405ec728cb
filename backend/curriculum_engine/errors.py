"""Error taxonomy shared by the curriculum services and HTTP surfaces."""

from __future__ import annotations


class CurriculumError(RuntimeError):
    """Base class for domain failures raised by the curriculum engine."""

    status_code: int = 500


class NotFoundError(CurriculumError):
    """Raised when a referenced assignment, week, session or job does not exist."""

    status_code = 404


class ConflictError(CurriculumError):
    """Raised when an active assignment already exists for the user and template."""

    status_code = 409


class InvalidStateError(CurriculumError):
    """Raised when an operation is not valid for the current state of a row."""

    status_code = 409


class AlreadyCompletedError(CurriculumError):
    status_code = 409


class IncompleteWeekError(CurriculumError):
    status_code = 409


class AlreadyAnalyzedError(CurriculumError):
    status_code = 409


class StaleTransitionError(CurriculumError):
    """Raised when a queue transition targets a job that is not in the expected status."""

    status_code = 409


class AnalysisParseError(CurriculumError):
    """Raised when the language model's analysis does not match the expected structure."""

    status_code = 502


class AnalysisModelError(CurriculumError):
    """Raised when the analysis model call itself fails."""

    status_code = 502


class ScenarioGenerationError(CurriculumError):
    """Raised when the generation pipeline fails to produce usable scenario content."""

    status_code = 502


class GenerationTimeoutError(ScenarioGenerationError):
    status_code = 504


__all__ = [
    "AlreadyAnalyzedError",
    "AlreadyCompletedError",
    "AnalysisModelError",
    "AnalysisParseError",
    "ConflictError",
    "CurriculumError",
    "GenerationTimeoutError",
    "IncompleteWeekError",
    "InvalidStateError",
    "NotFoundError",
    "ScenarioGenerationError",
    "StaleTransitionError",
]

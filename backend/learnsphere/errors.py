class ProgressionError(Exception):
	"""Base class for errors raised by the progression services."""

	status_code = 400


class InvalidProgressError(ProgressionError, ValueError):
	status_code = 400


class NotFoundError(ProgressionError, LookupError):
	status_code = 404


class LockedLessonError(ProgressionError):
	status_code = 409


class DuplicateAchievementError(ProgressionError):
	status_code = 400


class ConcurrencyError(ProgressionError):
	status_code = 409


class GenerationError(Exception):
	"""Gemini was unreachable or returned output that could not be turned into a course."""

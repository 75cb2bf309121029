"""
Error types for the EV NTA analysis pipeline.

Input and filename errors abort the whole run. Degenerate or empty groups
only stop processing of the affected group.
"""


class NTAAnalysisError(Exception):
    """Base class for all analysis errors."""


class MalformedInputError(NTAAnalysisError):
    """A raw ZetaView file is missing, too short, or has an unexpected preamble."""

    def __init__(self, filepath, reason):
        self.filepath = filepath
        self.reason = reason
        super().__init__(f"Malformed input file {filepath}: {reason}")


class FilenameFormatMismatchError(NTAAnalysisError):
    """A filename does not decompose into the fields of the run's schema."""

    def __init__(self, filename, expected, reason=None):
        self.filename = filename
        self.expected = expected
        self.reason = reason
        message = f"Filename '{filename}' does not match expected pattern '{expected}'"
        if reason:
            message += f" ({reason})"
        super().__init__(message)


class DegenerateSeriesError(NTAAnalysisError):
    """An aggregated series is empty or all zero, so it cannot be normalized."""

    def __init__(self, group_key):
        self.group_key = group_key
        super().__init__(f"Degenerate series for group '{group_key}': maximum count is zero")


class EmptySampleError(NTAAnalysisError):
    """A group has a total count of zero, so no statistics are defined."""

    def __init__(self, group_key):
        self.group_key = group_key
        super().__init__(f"Empty sample for group '{group_key}': total particle count is zero")

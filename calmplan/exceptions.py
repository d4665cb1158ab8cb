"""
calmplan - Engine exceptions
"""


class InputError(ValueError):
    """Malformed request data. The whole request is rejected."""


class DecisionServiceError(Exception):
    """
    The external decision service timed out, failed, was cancelled or
    answered with something unusable. Always recovered by the stage's
    rule-based fallback.
    """


class CandidateParseError(DecisionServiceError):
    """Strict parsing of a generation response failed."""

"""Error taxonomy for the analytics pipeline.

None of these are fatal: every one of them degrades to fewer insights for
the current cycle.
"""


class AnalysisError(Exception):
    """Base class for expected analysis failures."""


class InsufficientData(AnalysisError):
    """A sub-analysis did not get the minimum number of records it needs."""

    def __init__(self, analysis: str, required: int, available: int) -> None:
        super().__init__(f"{analysis} needs at least {required} records, got {available}")
        self.analysis = analysis
        self.required = required
        self.available = available


class UpstreamFetchFailure(AnalysisError):
    """The time-window repository could not produce a window."""

    def __init__(self, user_id: str, reason: str) -> None:
        super().__init__(f"Failed to fetch window for user {user_id}: {reason}")
        self.user_id = user_id
        self.reason = reason


class MalformedTimestamp(AnalysisError):
    """A raw record has no usable timestamp."""

    def __init__(self, kind: str, raw_value: object) -> None:
        super().__init__(f"Unusable timestamp on {kind} record: {raw_value!r}")
        self.kind = kind
        self.raw_value = raw_value

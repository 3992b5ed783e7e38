class TraceNormalizationError(ValueError):
    """Backend rows could not be turned into a trace or search response."""


class TraceNotFoundError(TraceNormalizationError):
    def __init__(self, trace_id: str):
        self.trace_id = trace_id
        super().__init__(f"Trace not found: {trace_id}")

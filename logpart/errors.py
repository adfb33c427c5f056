"""Errors raised by the storage, writer and query layers.

Parse failures are not exceptions: they are ordinary values returned by the
parser and tallied in the ingest report.
"""


class LogPartError(Exception):
    code = "LOGPART_ERROR"


class StoreUnavailable(LogPartError):
    """The durable storage substrate refused a read or write."""

    code = "STORE_UNAVAILABLE"

    def __init__(self, message: str, path: str = None, partition=None):
        super().__init__(message)
        self.message = message
        self.path = path
        # set later by callers that know the partition
        self.partition = partition

    def __str__(self):
        context = []
        if self.partition is not None:
            context.append(f"partition={self.partition}")
        if self.path is not None:
            context.append(f"path={self.path}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class InvalidJobSpec(LogPartError):
    """The aggregation job is malformed. Raised before any partition is scanned."""

    code = "INVALID_JOB_SPEC"

    def __init__(self, message: str, job=None):
        self.job = job
        if job is not None:
            message = f"{message}: {job.describe()}"
        super().__init__(message)


class QueryTimeout(LogPartError):
    code = "TIMEOUT"

    def __init__(self, job, timeout: float, pending: int):
        self.job = job
        self.timeout = timeout
        self.pending = pending
        super().__init__(
            f"aggregation did not finish within {timeout}s, "
            f"{pending} partition scan(s) abandoned: {job.describe()}"
        )

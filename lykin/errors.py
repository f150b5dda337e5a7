"""Exception hierarchy for lykin.

```text
LykinError
├── ConfigurationError
├── GatewayError             -- transport, protocol or RPC failure
│   ├── UnrecognizedResponse -- reply outside the expected set of values
│   └── FollowCheckFailed    -- follow status could not be determined
├── StoreError               -- storage failure
│   └── RecordEncodingError  -- record could not be encoded or decoded
├── ValidationError          -- malformed public key
└── WorkerError
    ├── WorkerTerminated     -- submission after the task loop stopped
    └── TaskQueueFull        -- bounded task queue is full
```
"""


class LykinError(Exception):
    """Base exception for all lykin errors."""


class ConfigurationError(LykinError):
    """Invalid configuration file or environment override."""


class GatewayError(LykinError):
    """The local gateway could not be reached or returned an error."""


class UnrecognizedResponse(GatewayError):
    """The gateway replied with a value outside the expected set."""

    def __init__(self, message: str, raw: object = None):
        super().__init__(message)
        self.raw = raw


class FollowCheckFailed(GatewayError):
    """The follow status of a peer could not be determined."""


class StoreError(LykinError):
    """The key-value store failed to read or write."""


class RecordEncodingError(StoreError):
    """A record could not be encoded or decoded.

    This is a programming fault, never an expected runtime condition.
    """


class ValidationError(LykinError):
    """A public key does not match the ed25519 feed id grammar."""


class WorkerError(LykinError):
    """Base for task loop submission errors."""


class WorkerTerminated(WorkerError):
    """The task loop no longer accepts tasks."""


class TaskQueueFull(WorkerError):
    """The bounded task queue rejected a submission."""

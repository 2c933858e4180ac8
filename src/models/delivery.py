from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class DeliveryStatus(Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass(frozen=True)
class DeliveryAttempt:
    attempt_id: str
    event_id: str
    endpoint_id: str
    url: str
    attempt_number: int  # 1 is the initial attempt
    status_code: int | None
    timestamp: datetime
    response_time_ms: float
    error: str | None = None

    @property
    def outcome(self) -> DeliveryStatus:
        if self.error is None and self.status_code is not None and 200 <= self.status_code < 300:
            return DeliveryStatus.SUCCEEDED
        return DeliveryStatus.FAILED

    @property
    def succeeded(self) -> bool:
        return self.outcome is DeliveryStatus.SUCCEEDED

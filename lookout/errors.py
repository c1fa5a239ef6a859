from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    UNSUPPORTED_CARRIER = "unsupported_carrier"
    PROVIDER_TIMEOUT = "provider_timeout"
    PROVIDER_BUSINESS_ERROR = "provider_business_error"
    PROVIDER_UNREACHABLE = "provider_unreachable"
    MALFORMED_RESPONSE = "malformed_response"
    STORE_WRITE_CONFLICT = "store_write_conflict"
    STORE_ERROR = "store_error"


RETRYABLE_KINDS = {ErrorKind.PROVIDER_TIMEOUT, ErrorKind.PROVIDER_UNREACHABLE, ErrorKind.STORE_ERROR}


@dataclass(frozen=True)
class ProviderError:
    """
    Tagged failure of a single lookout operation.
    Returned as a value; only programming errors are raised.
    """
    kind: ErrorKind
    detail: str
    code: Optional[int] = None

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS

    def describe(self) -> str:
        if self.code is not None:
            return f"{self.kind.value} ({self.code}): {self.detail}"
        return f"{self.kind.value}: {self.detail}"

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "detail": self.detail,
            "code": self.code,
            "retryable": self.retryable,
        }

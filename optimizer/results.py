"""
Module result type returned by every pipeline stage to the orchestrator.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

OK = 'ok'
SKIPPED = 'skipped'
ERROR = 'error'


@dataclass(frozen=True)
class ModuleResult:
    status: str
    payload: Dict[str, Any] = field(default_factory=dict)
    reason: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, **payload):
        return cls(status=OK, payload=payload)

    @classmethod
    def skipped(cls, reason, **payload):
        return cls(status=SKIPPED, payload=payload, reason=reason)

    @classmethod
    def failed(cls, error, **payload):
        message = str(error) or error.__class__.__name__
        return cls(status=ERROR, payload=payload, error=message)

    @property
    def is_ok(self):
        return self.status == OK

    def get(self, key, default=None):
        return self.payload.get(key, default)

    def to_dict(self):
        data = {**self.payload, 'status': self.status}
        if self.reason is not None:
            data['reason'] = self.reason
        if self.error is not None:
            data['error'] = self.error
        return data

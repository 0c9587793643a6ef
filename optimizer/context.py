"""
Read-only view of a site that every pipeline module receives.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class SiteContext:
    run_id: Any
    mode: str
    site: Any
    knowledge: Optional[Dict[str, Any]]
    autopilot: Any
    started_at: datetime

    @property
    def site_id(self):
        return self.site.pk

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

@dataclass
class AuditProvider:
    id: int
    name: str
    slug: str
    is_active: bool = True

@dataclass
class AuditReport:
    id: int
    provider_id: int
    title: str
    source_download_url: str
    details_page_url: Optional[str] = None
    created_at: Optional[datetime] = None

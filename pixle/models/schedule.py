"""Schedule records persisted by the schedule store."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from pixle.url_utils import resolve_url


class Schedule(BaseModel):
    id: str
    url_template: str  # contains a {locale} placeholder
    locales: list[str] = Field(default_factory=list)
    cron_expression: str
    is_paused: bool = False
    run_count: int = 0
    last_run: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now().astimezone())

    @property
    def state(self) -> str:
        return "Paused" if self.is_paused else "Active"

    def resolved_urls(self) -> list[tuple[str, str]]:
        """Return (locale, url) pairs in locale order."""
        return [(locale, resolve_url(self.url_template, locale)) for locale in self.locales]

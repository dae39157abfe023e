"""Explicit configuration object for the tenancy remediation services."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

DELETE_CONFIRM_PHRASE = "DELETE_QUARANTINED_ROW"
BACKFILL_CONFIRM_PHRASE = "APPLY_TENANTID_BACKFILL"
FIX_ORPHANS_CONFIRM_PHRASE = "FIX_ORPHANS"

DELETE_CONFIRM_HEADER = "X-Confirm-Delete"
BACKFILL_CONFIRM_HEADER = "X-Confirm-Backfill"

ENFORCEMENT_MODES = ("off", "soft", "strict")


@dataclass(frozen=True)
class TenancySettings:
    """Flags and limits shared by every remediation component.

    Built once per app from ``app.config`` and passed to each component's
    constructor.
    """

    quarantine_slug: str = "quarantine"
    quarantine_name: str = "Quarantine"
    enforcement_mode: str = "soft"
    delete_enabled: bool = False
    actions_enabled: bool = False
    backfill_enabled: bool = False
    sample_limit: int = 5
    page_size: int = 20
    max_page_size: int = 100
    update_chunk_size: int = 500

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> "TenancySettings":
        mode = str(config.get("TENANCY_ENFORCEMENT", "soft")).lower()
        if mode not in ENFORCEMENT_MODES:
            mode = "soft"
        return cls(
            quarantine_slug=config.get("QUARANTINE_TENANT_SLUG", "quarantine"),
            quarantine_name=config.get("QUARANTINE_TENANT_NAME", "Quarantine"),
            enforcement_mode=mode,
            delete_enabled=bool(config.get("SUPER_DEBUG_DELETE_ALLOWED", False)),
            actions_enabled=bool(config.get("SUPER_DEBUG_ACTIONS_ALLOWED", False)),
            backfill_enabled=bool(config.get("BACKFILL_TENANT_IDS_ALLOWED", False)),
            sample_limit=max(1, int(config.get("TENANCY_SAMPLE_LIMIT", 5))),
            page_size=max(1, int(config.get("TENANCY_PAGE_SIZE", 20))),
            max_page_size=max(1, int(config.get("TENANCY_MAX_PAGE_SIZE", 100))),
            update_chunk_size=max(1, int(config.get("TENANCY_UPDATE_CHUNK_SIZE", 500))),
        )

    def to_public_dict(self) -> dict:
        """Flags and confirmation phrases an operator console needs."""
        return {
            "quarantine_slug": self.quarantine_slug,
            "enforcement_mode": self.enforcement_mode,
            "delete_enabled": self.delete_enabled,
            "actions_enabled": self.actions_enabled,
            "backfill_enabled": self.backfill_enabled,
            "page_size": self.page_size,
            "max_page_size": self.max_page_size,
            "confirm_phrases": {
                "delete": DELETE_CONFIRM_PHRASE,
                "backfill": BACKFILL_CONFIRM_PHRASE,
                "fix_orphans": FIX_ORPHANS_CONFIRM_PHRASE,
            },
            "confirm_headers": {
                "delete": DELETE_CONFIRM_HEADER,
                "backfill": BACKFILL_CONFIRM_HEADER,
            },
        }

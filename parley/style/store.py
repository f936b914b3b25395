"""File-based JSON storage for style settings.

Backs :class:`~parley.style.resolver.SettingsSource` with simple JSON files
under ``<data_dir>/style/``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

from parley.style.models import PrecedenceMode, StylePreference


class StyleSettingsStore:
    """File-based storage for organization and user style settings.

    Storage path: ``<base_dir>`` with:
    - ``organizations.json`` -- org id -> ``{"style": {...}, "precedence": mode}``
    - ``users.json`` -- ``"<org id>:<subject id>"`` -> style dict
    """

    def __init__(self, base_dir: Optional[str | Path] = None) -> None:
        if base_dir is None:
            self._base = Path.home() / ".parley" / "style"
        else:
            self._base = Path(base_dir)
        self._base.mkdir(parents=True, exist_ok=True)
        self._orgs_path = self._base / "organizations.json"
        self._users_path = self._base / "users.json"

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _read_json(self, path: Path) -> dict:
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text())
            return data if isinstance(data, dict) else {}
        except (json.JSONDecodeError, OSError):
            return {}

    def _write_json(self, path: Path, data: dict) -> None:
        path.write_text(json.dumps(data, indent=2, default=str))

    @staticmethod
    def _user_key(org_id: str, subject_id: str) -> str:
        return f"{org_id}:{subject_id}"

    # ------------------------------------------------------------------
    # Writes (used by operators and tests; the pipeline only reads)
    # ------------------------------------------------------------------

    def set_org_style(
        self,
        org_id: str,
        style: StylePreference,
        precedence: PrecedenceMode = PrecedenceMode.fallback,
    ) -> None:
        orgs = self._read_json(self._orgs_path)
        orgs[org_id] = {"style": style.to_dict(), "precedence": precedence.value}
        self._write_json(self._orgs_path, orgs)

    def set_user_style(self, org_id: str, subject_id: str, style: StylePreference) -> None:
        users = self._read_json(self._users_path)
        users[self._user_key(org_id, subject_id)] = style.to_dict()
        self._write_json(self._users_path, users)

    def delete_user_style(self, org_id: str, subject_id: str) -> bool:
        users = self._read_json(self._users_path)
        if users.pop(self._user_key(org_id, subject_id), None) is None:
            return False
        self._write_json(self._users_path, users)
        return True

    # ------------------------------------------------------------------
    # SettingsSource
    # ------------------------------------------------------------------

    async def get_org_style(self, org_id: str) -> Optional[StylePreference]:
        entry = self._read_json(self._orgs_path).get(org_id)
        if not entry or not isinstance(entry.get("style"), dict):
            return None
        return StylePreference.from_dict(entry["style"])

    async def get_user_style(self, org_id: str, subject_id: str) -> Optional[StylePreference]:
        entry = self._read_json(self._users_path).get(self._user_key(org_id, subject_id))
        if not isinstance(entry, dict):
            return None
        return StylePreference.from_dict(entry)

    async def get_precedence_mode(self, org_id: str) -> Optional[PrecedenceMode]:
        entry = self._read_json(self._orgs_path).get(org_id)
        if not entry:
            return None
        try:
            return PrecedenceMode(entry.get("precedence", PrecedenceMode.fallback.value))
        except ValueError:
            return PrecedenceMode.fallback

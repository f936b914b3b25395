"""Layered style resolution.

Precedence is a property of the organization:

* ``override`` -- organization values verbatim, user preferences ignored.
* ``layer`` / ``fallback`` -- field by field, a non-null user value wins,
  else the organization value, else absent.

``layer`` and ``fallback`` deliberately share one merge function.  Whether
the two modes should ever diverge is an open product question; until it is
answered they must stay identical.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import structlog

from parley.style.models import (
    STYLE_FIELDS,
    EffectiveStyleContext,
    PrecedenceMode,
    StylePreference,
)

logger = structlog.get_logger(__name__)


class SettingsSource(Protocol):
    """Read-only access to stored style settings."""

    async def get_org_style(self, org_id: str) -> Optional[StylePreference]: ...

    async def get_user_style(self, org_id: str, subject_id: str) -> Optional[StylePreference]: ...

    async def get_precedence_mode(self, org_id: str) -> Optional[PrecedenceMode]: ...


def _copy(pref: StylePreference, source: str) -> EffectiveStyleContext:
    return EffectiveStyleContext(
        **{name: getattr(pref, name) for name in STYLE_FIELDS},
        sources=(source,),
    )


def _user_first(
    user: Optional[StylePreference], org: StylePreference
) -> EffectiveStyleContext:
    values = {}
    for name in STYLE_FIELDS:
        user_value = getattr(user, name) if user is not None else None
        values[name] = user_value if user_value is not None else getattr(org, name)
    sources = ("user", "organization") if user is not None else ("organization",)
    return EffectiveStyleContext(**values, sources=sources)


def merge_styles(
    org: Optional[StylePreference],
    user: Optional[StylePreference],
    mode: PrecedenceMode = PrecedenceMode.fallback,
) -> EffectiveStyleContext:
    """Pure merge of organization and user style under *mode*."""
    if org is None:
        if user is None:
            return EffectiveStyleContext()
        return _copy(user, "user")

    if mode is PrecedenceMode.override:
        return _copy(org, "organization")
    if mode is PrecedenceMode.layer or mode is PrecedenceMode.fallback:
        return _user_first(user, org)
    raise ValueError(f"Unhandled precedence mode: {mode!r}")


class StyleResolver:
    """Resolves the effective style for a subject; never blocks the pipeline."""

    def __init__(self, settings: SettingsSource) -> None:
        self._settings = settings

    async def resolve(self, org_id: str, subject_id: str) -> EffectiveStyleContext:
        try:
            org, user, mode = await asyncio.gather(
                self._settings.get_org_style(org_id),
                self._settings.get_user_style(org_id, subject_id),
                self._settings.get_precedence_mode(org_id),
            )
        except Exception as exc:
            logger.warning(
                "style lookup failed, using empty style",
                org_id=org_id,
                subject_id=subject_id,
                error=str(exc),
            )
            return EffectiveStyleContext()

        effective = merge_styles(org, user, mode or PrecedenceMode.fallback)
        logger.debug(
            "style resolved",
            org_id=org_id,
            subject_id=subject_id,
            mode=(mode or PrecedenceMode.fallback).value,
            sources=list(effective.sources),
        )
        return effective

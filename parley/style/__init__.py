from parley.style.models import EffectiveStyleContext, PrecedenceMode, StylePreference
from parley.style.resolver import SettingsSource, StyleResolver, merge_styles
from parley.style.store import StyleSettingsStore

__all__ = [
    "EffectiveStyleContext",
    "PrecedenceMode",
    "SettingsSource",
    "StylePreference",
    "StyleResolver",
    "StyleSettingsStore",
    "merge_styles",
]

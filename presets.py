"""
POOL MATERIAL VISUALIZER - Underwater Presets

Underwater realism settings. The compositing pipeline only consumes
`enabled`, `blend`, `refraction` and `edgeSoftness`; the full settings
dictionary carries the extra UI parameters alongside them.
Each preset is a dictionary with 'name', 'description' and 'settings' keys.
"""

import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

# Material categories that sit below the waterline
UNDERWATER_CATEGORIES = ('interior', 'waterline_tile')

# Slider ranges (inclusive)
SETTING_RANGES = {
    'blend': (0, 100),
    'refraction': (0, 100),
    'edgeSoftness': (0, 12),
    'depthBias': (0, 100),
    'tint': (0, 100),
    'edgeFeather': (0, 20),
    'highlights': (0, 100),
    'ripple': (0, 100),
    'materialOpacity': (0, 100),
    'contactOcclusion': (0, 100),
    'textureBoost': (0, 100),
    'meniscus': (0, 100),
    'softness': (0, 100),
}

# Default settings (enabled is decided per category)
DEFAULT_SETTINGS = {
    'enabled': False,
    'blend': 65,            # tint/attenuation strength
    'refraction': 25,       # ripple displacement strength
    'edgeSoftness': 6,      # inner shadow falloff (px)
    'depthBias': 35,
    'tint': 18,
    'edgeFeather': 8,
    'highlights': 20,
    'ripple': 0,
    'materialOpacity': 85,
    'autoCalibrated': False,
    'contactOcclusion': 9,
    'textureBoost': 20,
    'meniscus': 32,
    'softness': 0,
}

# Starting point before auto-calibration replaces the photo-dependent values
AUTO_CALIBRATED_DEFAULTS = {
    'blend': 45,
    'depthBias': 24,
    'tint': 20,
    'highlights': 22,
    'autoCalibrated': True,
}


@dataclass(frozen=True)
class UnderwaterSettings:
    """The parameters the compositing pipeline consumes."""
    enabled: bool = True
    blend: float = 65
    refraction: float = 25
    edge_softness: float = 6

    def __post_init__(self):
        for name in ('blend', 'refraction', 'edge_softness'):
            value = getattr(self, name)
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValueError(f"{name} must be a finite number, got {value!r}")
        low, high = SETTING_RANGES['edgeSoftness']
        object.__setattr__(self, 'blend', max(0, min(100, self.blend)))
        object.__setattr__(self, 'refraction', max(0, min(100, self.refraction)))
        object.__setattr__(self, 'edge_softness', max(low, min(high, self.edge_softness)))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'UnderwaterSettings':
        """Build from a (possibly partial) settings dictionary."""
        merged = {**DEFAULT_SETTINGS, 'enabled': True, **data}
        return cls(
            enabled=bool(merged['enabled']),
            blend=merged['blend'],
            refraction=merged['refraction'],
            edge_softness=merged['edgeSoftness'],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'enabled': self.enabled,
            'blend': self.blend,
            'refraction': self.refraction,
            'edgeSoftness': self.edge_softness,
        }


def clamp_settings(settings: Dict[str, Any]) -> Dict[str, Any]:
    """Clamp every known numeric setting into its slider range."""
    clamped = dict(settings)
    for key, (low, high) in SETTING_RANGES.items():
        value = clamped.get(key)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            clamped[key] = max(low, min(high, value))
    return clamped


def default_underwater_settings(category: Optional[str] = None, auto_calibrated: bool = False) -> Dict[str, Any]:
    """Full settings dictionary for a material category.

    Pool interior and waterline materials get the effect enabled.
    """
    settings = DEFAULT_SETTINGS.copy()
    settings['enabled'] = category in UNDERWATER_CATEGORIES
    if auto_calibrated:
        settings.update(AUTO_CALIBRATED_DEFAULTS)
    return settings


def _make_preset(name: str, description: str, settings: dict = None) -> dict:
    """Helper to create a preset with defaults filled in."""
    merged = DEFAULT_SETTINGS.copy()
    merged['enabled'] = True
    if settings:
        merged.update(settings)

    return {
        'name': name,
        'description': description,
        'settings': clamp_settings(merged),
    }


# ============================================================================
# UNDERWATER PRESETS
# ============================================================================

PRESETS = {
    # Dry - effect off, material shown as-is
    'dry': _make_preset(
        'Dry',
        'No underwater effect',
        settings={'enabled': False},
    ),

    # Standard - the everyday look for a filled residential pool
    'standard': _make_preset(
        'Standard',
        'Balanced tint, gentle ripple and soft edges',
    ),

    # Shallow - beach entries, tanning ledges, steps
    'shallow': _make_preset(
        'Shallow',
        'Clear water over a ledge or step',
        settings={
            'blend': 35,
            'refraction': 15,
            'edgeSoftness': 4,
            'depthBias': 15,
            'tint': 12,
        },
    ),

    # Deep - deep end floors, dark finishes
    'deep': _make_preset(
        'Deep',
        'Strong attenuation and soft walls for the deep end',
        settings={
            'blend': 85,
            'refraction': 30,
            'edgeSoftness': 10,
            'depthBias': 60,
            'tint': 28,
            'highlights': 12,
        },
    ),

    # Choppy - wind or jets disturbing the surface
    'choppy': _make_preset(
        'Choppy',
        'Pronounced refraction from a moving surface',
        settings={
            'blend': 60,
            'refraction': 70,
            'ripple': 40,
            'edgeSoftness': 8,
        },
    ),

    # Waterline - tile band at the surface, barely submerged
    'waterline': _make_preset(
        'Waterline',
        'Light tint with a crisp edge for waterline tile',
        settings={
            'blend': 25,
            'refraction': 10,
            'edgeSoftness': 2,
            'meniscus': 40,
        },
    ),
}

PRESET_ORDER = ['dry', 'standard', 'shallow', 'deep', 'choppy', 'waterline']


def get_preset(key: str, store=None) -> dict:
    """Get a preset by key (built-in or user). Returns the standard preset if not found."""
    if key in PRESETS:
        return PRESETS[key]
    user_presets = _store(store).get_user_presets()
    return user_presets.get(key, PRESETS['standard'])


def get_preset_settings(key: str, store=None) -> UnderwaterSettings:
    """Pipeline settings for a preset."""
    return UnderwaterSettings.from_dict(get_preset(key, store)['settings'])


def get_preset_list(store=None) -> list:
    """Get list of (key, name, description) tuples in display order.

    Returns built-in presets first, then user presets.
    """
    result = []
    for key in PRESET_ORDER:
        preset = PRESETS.get(key)
        if preset:
            result.append((key, preset['name'], preset['description']))

    user_presets = _store(store).get_user_presets()
    user_items = [(k, p['name'], p.get('description', '')) for k, p in user_presets.items()]
    user_items.sort(key=lambda x: x[1].lower())
    result.extend(user_items)

    return result


def is_user_preset(key: str) -> bool:
    return key not in PRESETS


def create_user_preset(name: str, description: str, settings: dict, store=None) -> str:
    """Create a new user preset and save it to storage.

    Args:
        name: Display name for the preset
        description: Brief description
        settings: Underwater settings dict (partial is fine)
        store: Storage to save into (defaults to the shared one)

    Returns:
        The generated preset key
    """
    import time

    key = f"user_{name.lower().replace(' ', '_')}_{int(time.time())}"
    preset = _make_preset(name, description, settings)
    _store(store).save_user_preset(key, preset)
    return key


def delete_user_preset(key: str, store=None) -> bool:
    """Delete a user preset. Built-in presets cannot be deleted."""
    if key in PRESETS:
        return False
    return _store(store).delete_user_preset(key)


def _store(store):
    if store is not None:
        return store
    import storage
    return storage.get_storage()

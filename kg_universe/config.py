"""
Force configuration for the layout engine.

A flat set of named numeric tuning parameters. Each one can be changed at
runtime through `ForceConfigUpdate` without a full relayout.
"""

from typing import Any, Optional
from pydantic import BaseModel


# Simulation constants
ALPHA_START = 1.0
ALPHA_DECAY = 0.03
ALPHA_MIN = 0.001
VELOCITY_DECAY = 0.4
MAX_TICKS = 500
RECONFIGURE_ALPHA = 0.1
FALLBACK_ALPHA = 0.05


class ForceConfig(BaseModel):
    """Tuning parameters for the spherical knowledge universe layout."""
    charge_strength: float = -100
    link_distance: float = 30
    link_strength: float = 0.2
    collision_radius: float = 6
    community_strength: float = 0.2
    center_strength: float = 0.02  # Low so the spherical shells survive
    spread_3d: float = 150
    level_spacing: float = 40
    spherical_constraint: float = 0.05

    def merged(self, update: "ForceConfigUpdate | dict[str, Any]") -> "ForceConfig":
        """Return a new config with the explicitly set fields of `update` applied."""
        if isinstance(update, dict):
            update = ForceConfigUpdate(**update)
        return self.model_copy(update=update.model_dump(exclude_unset=True, exclude_none=True))


class ForceConfigUpdate(BaseModel):
    """Partial config update (all fields optional)."""
    charge_strength: Optional[float] = None
    link_distance: Optional[float] = None
    link_strength: Optional[float] = None
    collision_radius: Optional[float] = None
    community_strength: Optional[float] = None
    center_strength: Optional[float] = None
    spread_3d: Optional[float] = None
    level_spacing: Optional[float] = None
    spherical_constraint: Optional[float] = None

    model_config = {"extra": "forbid"}

    def changed_fields(self) -> set[str]:
        """Names of the parameters this update sets."""
        return set(self.model_dump(exclude_unset=True, exclude_none=True))


def parse_overrides(pairs: list[str]) -> ForceConfigUpdate:
    """
    Parse `name=value` strings into a config update.

    Raises:
        ValueError: If a pair is malformed or names an unknown parameter
    """
    values: dict[str, float] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Expected name=value, got: {pair}")
        name, _, raw = pair.partition("=")
        name = name.strip().replace("-", "_")
        if name not in ForceConfig.model_fields:
            raise ValueError(f"Unknown force parameter: {name}")
        try:
            values[name] = float(raw)
        except ValueError:
            raise ValueError(f"Invalid value for {name}: {raw}")
    return ForceConfigUpdate(**values)

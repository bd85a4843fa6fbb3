"""Effect registry — central lookup for all registered effects."""

from effects.base import EffectBase
from project.schema import InvalidJSON

_REGISTRY: dict[str, dict] = {}


def register(effect_type: str, cls: type[EffectBase], params: dict, category: str):
    """Register an effect class under its document type name."""
    _REGISTRY[effect_type] = {
        "cls": cls,
        "params": params,
        "name": cls.name,
        "description": cls.description,
        "category": category,
    }


def get(effect_type: str) -> dict | None:
    """Get effect info by type name."""
    return _REGISTRY.get(effect_type)


def list_all() -> list[dict]:
    """List all registered effects with metadata."""
    return [
        {
            "id": etype,
            "name": info["name"],
            "description": info["description"],
            "category": info["category"],
            "params": info["params"],
        }
        for etype, info in _REGISTRY.items()
    ]


def create(effect_type: str, json: str | None = None) -> EffectBase:
    """Build a fresh effect instance, optionally loading a JSON document.

    Raises:
        ValueError: Unknown effect type.
        InvalidJSON: The document could not be loaded.
    """
    info = get(effect_type)
    if info is None:
        raise ValueError(f"unknown effect: {effect_type}")
    effect = info["cls"]()
    if json is not None:
        effect.set_json(json)
    return effect


def from_json_value(root: dict) -> EffectBase:
    """Build an effect from an already-parsed document (dispatch on 'type').

    Raises:
        ValueError: Unknown effect type.
        InvalidJSON: The document could not be loaded.
    """
    if not isinstance(root, dict):
        raise InvalidJSON(f"effect must be an object, got {type(root).__name__}")
    effect_type = root.get("type")
    info = get(effect_type) if isinstance(effect_type, str) else None
    if info is None:
        raise ValueError(f"unknown effect: {effect_type}")
    effect = info["cls"]()
    effect.load(root)
    return effect


def _auto_register():
    """Import and register all built-in effects."""
    from effects import outline
    from effects.fx import outline as outline_fx

    register(
        outline.Outline.class_name,
        outline.Outline,
        outline_fx.PARAMS,
        outline_fx.EFFECT_CATEGORY,
    )


_auto_register()

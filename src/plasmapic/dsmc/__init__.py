"""
Collision models.

Both models expose apply(dt) -> number of collisions performed.
"""

from enum import Enum

from .collisions import VHSCollisions, collide, vhs_cross_section
from .coulomb import NanbuCollisions


class CollisionModel(Enum):
    VHS = "vhs"
    NANBU = "nanbu"


_MODELS = {
    CollisionModel.VHS: VHSCollisions,
    CollisionModel.NANBU: NanbuCollisions,
}


def make_interaction(model, *args, **kwargs):
    """
    Build a collision model.

    Args:
        model: CollisionModel or its string value ("vhs", "nanbu")
        *args, **kwargs: Passed to the model constructor

    Raises:
        ValueError: If the model is unknown

    Example:
        >>> vhs = make_interaction("vhs", domain, xe, rng)
        >>> coulomb = make_interaction(CollisionModel.NANBU, domain, species, 11604.5, 1e15, rng)
    """
    try:
        model = CollisionModel(model)
    except ValueError:
        raise ValueError(f"Unknown collision model: {model!r}") from None
    return _MODELS[model](*args, **kwargs)


__all__ = [
    "CollisionModel",
    "NanbuCollisions",
    "VHSCollisions",
    "collide",
    "make_interaction",
    "vhs_cross_section",
]

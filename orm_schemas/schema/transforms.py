"""Input transforms applied whenever an attribute is written.

Attributes declared with ``trim``, ``lowercase`` or ``uppercase`` get an
attribute ``set`` listener that rewrites string values before they reach the
instance state. Extra transforms can be registered under a new flag name and
enabled per model with ``options["transforms"] = {"attr": ["flag", ...]}``.
"""

import logging
from collections.abc import Callable, Iterable
from typing import Any

from sqlalchemy import event

logger = logging.getLogger("orm-schemas")

Transform = Callable[[Any], Any]

TRANSFORMS: dict[str, Transform] = {
    "trim": lambda value: value.strip() if isinstance(value, str) else value,
    "lowercase": lambda value: value.lower() if isinstance(value, str) else value,
    "uppercase": lambda value: value.upper() if isinstance(value, str) else value,
}


def register_transform(name: str, transform: Transform) -> None:
    """Make a custom transform available to every model."""
    TRANSFORMS[name] = transform


def compose(names: Iterable[str]) -> Transform:
    """Chain the named transforms, in the given order."""
    try:
        chain = [TRANSFORMS[name] for name in names]
    except KeyError as e:
        raise ValueError(f"Unknown transform {e.args[0]}, known transforms: {', '.join(TRANSFORMS)}") from e  # noqa: TRY003

    def apply(value: Any) -> Any:
        for transform in chain:
            value = transform(value)
        return value

    return apply


def install_transforms(model_cls: type, transforms: dict[str, list[str]]) -> None:
    """Attach a ``set`` listener to every attribute that declares transforms.

    Args:
        model_cls: A mapped model class.
        transforms: Attribute name to the ordered list of transform names.
    """
    for attribute, names in transforms.items():
        if not names:
            continue
        apply = compose(names)

        def on_set(target, value, oldvalue, initiator, _apply=apply):
            return _apply(value)

        event.listen(getattr(model_cls, attribute), "set", on_set, retval=True)
        logger.debug(f"{model_cls.__name__}.{attribute} transforms: {', '.join(names)}")

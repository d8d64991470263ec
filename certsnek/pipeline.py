"""
Composition of issuance steps.

A step is a function taking a Context and returning a new Context. Steps are
run strictly in order, and the first failure stops the run.
"""

import logging
from collections.abc import Mapping
from typing import Any, Callable, Iterable, Iterator, List, Sequence, Tuple

from .errors import MissingContextKey, PipelineError

logger = logging.getLogger(__name__)

Step = Callable[["Context"], "Context"]


class Context(Mapping):
    """
    Immutable key/value mapping accumulated across the pipeline.

    Keys can be added or overwritten through ``assoc`` but never removed.
    """

    def __init__(self, *args, **kwargs):
        self._data = dict(*args, **kwargs)

    def __getitem__(self, key: str) -> Any:
        return self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def __repr__(self) -> str:
        return f"Context({', '.join(sorted(self._data))})"

    def assoc(self, **values) -> "Context":
        """Return a copy of this context with the given keys added or replaced."""
        data = dict(self._data)
        data.update(values)
        return Context(data)

    def require(self, *keys: str) -> Tuple[Any, ...]:
        """
        Look up several keys at once.

        Raises:
            MissingContextKey: If any of the keys is absent
        """
        missing = [key for key in keys if key not in self._data]
        if missing:
            raise MissingContextKey(missing)
        return tuple(self._data[key] for key in keys)


def step(requires: Sequence[str] = (), provides: Sequence[str] = ()):
    """
    Declare the context keys a step reads and the keys it adds.

    The pipeline checks both sides when the step runs.
    """
    def decorate(func: Step) -> Step:
        func.requires = tuple(requires)
        func.provides = tuple(provides)
        return func
    return decorate


def step_name(func: Step) -> str:
    return getattr(func, "__name__", repr(func))


def _check_keys(context: Context, keys: Iterable[str], name: str) -> None:
    missing = [key for key in keys if key not in context]
    if missing:
        raise MissingContextKey(missing, step=name)


def run(steps: Sequence[Step], context: Mapping) -> Context:
    """
    Apply the steps to the context from left to right.

    Args:
        steps: Ordered step functions
        context: Initial context

    Returns:
        The context returned by the last step

    Raises:
        PipelineError: If a step raises; the remaining steps are skipped
    """
    current = context if isinstance(context, Context) else Context(context)
    for index, func in enumerate(steps, start=1):
        name = step_name(func)
        try:
            _check_keys(current, getattr(func, "requires", ()), name)
            result = func(current)
            if not isinstance(result, Context):
                raise TypeError(f"Step {name} returned {type(result).__name__}, expected Context")
            _check_keys(result, getattr(func, "provides", ()), name)
        except Exception as e:
            logger.error(f"Step {index} ({name}) failed: {e}")
            raise PipelineError(name, index, current, e) from e
        current = result
    return current


def compose(steps: Sequence[Step]) -> Callable[[Mapping], Context]:
    """Same as running the steps one after the other, fixed at composition time."""
    frozen = tuple(steps)

    def composed(context: Mapping) -> Context:
        return run(frozen, context)

    return composed


def traced(steps: Sequence[Step]) -> List[Step]:
    """Wrap each step so its name is logged before it runs."""
    def wrap(func: Step) -> Step:
        def wrapper(context: Context) -> Context:
            logger.info(f"step: {step_name(func)}")
            return func(context)
        wrapper.__name__ = step_name(func)
        wrapper.__doc__ = func.__doc__
        wrapper.requires = getattr(func, "requires", ())
        wrapper.provides = getattr(func, "provides", ())
        return wrapper
    return [wrap(func) for func in steps]

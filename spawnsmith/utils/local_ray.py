"""Stand-ins for Ray actor handles so actors can run in-process (local mode)."""
from __future__ import annotations

from typing import Any, Callable

import ray


class _LocalMethodProxy:
    """Wrap a bound method so calls through `.remote()` execute synchronously."""

    __slots__ = ("_func",)

    def __init__(self, func: Callable[..., Any]) -> None:
        self._func = func

    def remote(self, *args: Any, **kwargs: Any) -> Any:
        return self._func(*args, **kwargs)


class LocalActorProxy:
    """Mimics a Ray actor handle for an in-process instance."""

    __slots__ = ("_impl",)

    def __init__(self, impl: Any) -> None:
        self._impl = impl

    def __getattr__(self, item: str) -> Any:
        attr = getattr(self._impl, item)
        if callable(attr):
            return _LocalMethodProxy(attr)
        return attr

    @property
    def instance(self) -> Any:
        return self._impl


def identity_get(obj: Any) -> Any:
    """Replacement for ``ray.get`` that leaves objects untouched."""

    return obj


def local_actor(actor_cls: Any, *args: Any, **kwargs: Any) -> LocalActorProxy:
    """Instantiate the plain class behind a ``@ray.remote`` actor and wrap it."""
    impl_cls = getattr(getattr(actor_cls, "__ray_metadata__", None), "modified_class", actor_cls)
    return LocalActorProxy(impl_cls(*args, **kwargs))


def object_getter(local_mode: bool) -> Callable[[Any], Any]:
    return identity_get if local_mode else ray.get

"""
CQL Instrumentation - Registration Guard

Installs the wrappers onto the Cassandra driver at startup, but only when
the driver is loaded in the process and instrumentation is not disabled.

Installation is idempotent. Hooks are patched with wrapt and marked, so a
second install() (from this or any other instrumentor) finds them already
in place and does nothing.

Usage:
    from cql_instrumentation import install_instrumentation

    import cassandra.cluster  # driver must be loaded first
    install_instrumentation()
"""

import importlib
import inspect
import logging
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Literal

import wrapt

from ..config import InstrumentationSettings, get_config
from ..errors import ErrorCode, HookTargetError
from .interface import AgentInterface
from .wrapper import AsyncInstrumentedCall, InstrumentedCall, StatementTracer

logger = logging.getLogger(__name__)

HookKind = Literal["request", "async_request", "statement"]

# Attribute set on the wrapt proxy of every installed hook
_MARKER = "_self_cql_instrumentation"

_WRAPPER_TYPES: dict[str, type[InstrumentedCall]] = {
    "request": InstrumentedCall,
    "async_request": AsyncInstrumentedCall,
    "statement": StatementTracer,
}


@dataclass(frozen=True)
class Hook:
    """A callable to patch, addressed as <module>:<attribute path>."""

    module: str
    attribute: str
    kind: HookKind = "request"
    query_argument: int = 0

    @property
    def key(self) -> str:
        return f"{self.module}:{self.attribute}"

    @property
    def root_module(self) -> str:
        return self.module.split(".", 1)[0]


DEFAULT_HOOKS: tuple[Hook, ...] = (
    Hook("cassandra.cluster", "Session.execute", kind="request", query_argument=0),
    Hook("cassandra.cluster", "Session.execute_async", kind="async_request", query_argument=0),
)


def resolve_hook(hook: Hook) -> tuple[Any, str]:
    """
    Resolve the object owning a hook's attribute.

    Args:
        hook: Hook to resolve

    Returns:
        (owner, attribute name) pair

    Raises:
        HookTargetError: If the module, an intermediate attribute or the
            callable itself cannot be found
    """
    module = sys.modules.get(hook.module)
    if module is None:
        try:
            module = importlib.import_module(hook.module)
        except ImportError as e:
            raise HookTargetError(hook.module, hook.attribute, f"module cannot be imported ({e})") from e

    *path, name = hook.attribute.split(".")
    owner: Any = module
    for part in path:
        owner = getattr(owner, part, None)
        if owner is None:
            raise HookTargetError(hook.module, hook.attribute, f"{part!r} not found")

    target = getattr(owner, name, None)
    if target is None:
        raise HookTargetError(hook.module, hook.attribute, f"{name!r} not found")
    if not callable(target):
        raise HookTargetError(
            hook.module,
            hook.attribute,
            f"{name!r} is not callable",
            error_code=ErrorCode.HOOK_NOT_CALLABLE,
        )

    return owner, name


def _own_marker(obj: Any) -> str | None:
    # Plain getattr on a wrapt proxy falls through to the wrapped object
    try:
        return object.__getattribute__(obj, _MARKER)
    except AttributeError:
        return None


def _installed_proxy(owner: Any, name: str) -> tuple[Any | None, bool]:
    """
    Find our proxy in the chain of wrappers installed on owner.name.

    Returns:
        (proxy or None, whether the proxy is the attribute itself)
    """
    current = inspect.getattr_static(owner, name, None)
    outermost = True
    seen: set[int] = set()
    while current is not None and id(current) not in seen:
        if _own_marker(current):
            return current, outermost
        seen.add(id(current))
        current = getattr(current, "__wrapped__", None)
        outermost = False
    return None, False


class CassandraInstrumentor:
    """
    Registration guard for the Cassandra driver hooks.

    Installs only if the driver is loaded and neither
    disable_cassandra_instrumentation nor disable_database_instrumentation
    is set.
    """

    library = "cassandra"

    def __init__(
        self,
        agent: AgentInterface,
        settings: InstrumentationSettings | None = None,
        hooks: Sequence[Hook] = DEFAULT_HOOKS,
    ):
        self._agent = agent
        self._settings = settings if settings is not None else get_config()
        self._hooks = tuple(hooks)

    @property
    def hooks(self) -> tuple[Hook, ...]:
        return self._hooks

    @property
    def installed(self) -> bool:
        """True if at least one hook is currently patched."""
        return any(self._is_patched(hook) for hook in self._hooks)

    def is_library_loaded(self) -> bool:
        """Check whether the driver has been imported by the host process."""
        return any(hook.root_module in sys.modules for hook in self._hooks)

    def is_enabled(self) -> bool:
        """Check the library-specific and the global disable flags."""
        return not self._settings.instrumentation.is_disabled(self.library)

    def install(self) -> bool:
        """
        Patch every hook that is not patched yet.

        Returns:
            True if any hook is installed afterwards
        """
        if not self.is_library_loaded():
            logger.debug(
                "Cassandra driver not loaded, skipping instrumentation",
                extra={"modules": sorted({hook.root_module for hook in self._hooks})},
            )
            return False

        if not self.is_enabled():
            logger.debug("Cassandra instrumentation disabled by configuration")
            return self.installed

        pending = [hook for hook in self._hooks if not self._is_patched(hook)]
        if not pending:
            return True

        self._agent.log_info("Installing Cassandra instrumentation")
        for hook in pending:
            self._install_hook(hook)

        return self.installed

    def uninstall(self) -> None:
        """Restore the original callables of every patched hook."""
        for hook in self._hooks:
            try:
                owner, name = resolve_hook(hook)
            except HookTargetError:
                continue

            proxy, outermost = _installed_proxy(owner, name)
            if proxy is None:
                continue
            if not outermost:
                logger.warning(
                    f"Cannot remove instrumentation from {hook.key}, another wrapper was installed over it",
                    extra={"hook": hook.key},
                )
                continue

            setattr(owner, name, proxy.__wrapped__)
            logger.info(f"Removed instrumentation from {hook.key}", extra={"hook": hook.key})

    def _is_patched(self, hook: Hook) -> bool:
        try:
            owner, name = resolve_hook(hook)
        except HookTargetError:
            return False
        return _installed_proxy(owner, name)[0] is not None

    def _install_hook(self, hook: Hook) -> None:
        try:
            owner, name = resolve_hook(hook)
        except HookTargetError as e:
            logger.warning(e.message, extra={"hook": hook.key, "error_code": e.error_code.value})
            return

        wrapper_type = _WRAPPER_TYPES[hook.kind]
        call = wrapper_type(
            inspect.getattr_static(owner, name),
            self._agent,
            settings=self._settings,
            library=self.library,
            query_argument=hook.query_argument,
        )
        proxy = wrapt.wrap_function_wrapper(owner, name, call.wrapt_wrapper)
        setattr(proxy, _MARKER, hook.key)

        logger.info(f"Instrumented {hook.key}", extra={"hook": hook.key, "kind": hook.kind})


def install_instrumentation(
    agent: AgentInterface | None = None,
    settings: InstrumentationSettings | None = None,
) -> CassandraInstrumentor:
    """
    Create a CassandraInstrumentor and install it.

    Args:
        agent: Monitoring agent (default: the global reference agent)
        settings: Configuration (default: the global configuration)

    Returns:
        The instrumentor, installed if the guard allowed it
    """
    if agent is None:
        from ..observability import get_agent

        agent = get_agent()

    instrumentor = CassandraInstrumentor(agent, settings=settings)
    instrumentor.install()
    return instrumentor

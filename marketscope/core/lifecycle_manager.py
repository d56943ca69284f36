# MARKETSCOPE_FEAT: lifecycle-001
"""
MARKETSCOPE - Lifecycle Manager
===============================

Ordered startup/shutdown phases with per-phase hooks.

Phases run strictly by ascending ``order`` on start and descending on
stop. Hooks inside a phase run by descending priority, reversed on stop.
A failing hook is reported and skipped, except in the phase named
``"critical"`` where the failure aborts the run.

Author: MARKETSCOPE Development Team
Version: 1.0.0
"""

import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union
from uuid import uuid4

from .event_bus import EventBus, EventType
from .exceptions import AlreadyRunningError, HookError

logger = logging.getLogger("MARKETSCOPE_Lifecycle")

SOURCE = "lifecycle-manager"
CRITICAL_PHASE = "critical"

HookHandler = Callable[[], Union[None, Awaitable[None]]]


class PhaseState(str, Enum):
    """Execution state of one phase."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"


@dataclass
class LifecyclePhase:
    """
    Lifecycle phase definition.

    ``dependencies`` is informational; execution order comes from ``order``.
    """

    name: str
    order: int
    description: str = ""
    dependencies: List[str] = field(default_factory=list)


@dataclass
class LifecycleHook:
    """Handler attached to a phase."""

    id: str
    phase: str
    plugin_id: str
    handler: HookHandler
    priority: int = 0
    enabled: bool = True


@dataclass
class LifecycleStatus:
    """Execution record of one phase."""

    phase: str
    status: PhaseState = PhaseState.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None
    hooks: List[LifecycleHook] = field(default_factory=list)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "phase": self.phase,
            "status": self.status.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error": self.error,
            "hooks": [h.id for h in self.hooks],
        }


DEFAULT_PHASES = (
    LifecyclePhase("pre-init", 0, "Pre-initialization phase"),
    LifecyclePhase("config", 1, "Configuration loading phase", ["pre-init"]),
    LifecyclePhase("services", 2, "Service container initialization", ["config"]),
    LifecyclePhase("plugins", 3, "Plugin discovery and loading", ["services"]),
    LifecyclePhase("post-init", 4, "Post-initialization phase", ["plugins"]),
    LifecyclePhase("ready", 5, "Application ready phase", ["post-init"]),
)


class LifecycleManager:
    """
    Lifecycle phase runner.

    Example:
        lifecycle = LifecycleManager(event_bus)

        lifecycle.register_hook("services", warm_caches, plugin_id="yahoo-finance")
        lifecycle.register_hook("services", open_pool, plugin_id="kernel", priority=10)

        await lifecycle.start()   # open_pool, then warm_caches
        await lifecycle.stop()    # warm_caches, then open_pool
    """

    def __init__(self, event_bus: EventBus, register_defaults: bool = True):
        self._event_bus = event_bus
        self._phases: Dict[str, LifecyclePhase] = {}
        self._hooks: Dict[str, List[LifecycleHook]] = {}
        self._status: Dict[str, LifecycleStatus] = {}
        self._running = False

        if register_defaults:
            for phase in DEFAULT_PHASES:
                self.register_phase(
                    LifecyclePhase(phase.name, phase.order, phase.description, list(phase.dependencies))
                )

        logger.info("LifecycleManager initialized")

    # -------------------------------------------------------------------------
    # Registration
    # -------------------------------------------------------------------------

    def register_phase(self, phase: LifecyclePhase) -> None:
        """Add a phase, replacing any phase with the same name."""
        self._phases[phase.name] = phase
        self._status[phase.name] = LifecycleStatus(
            phase=phase.name, hooks=list(self._hooks.get(phase.name, []))
        )

        logger.debug(f"Phase registered: {phase.name} (order={phase.order})")
        self._event_bus.emit(
            EventType.LIFECYCLE_PHASE_REGISTERED,
            {"phase": phase.name, "order": phase.order},
            source=SOURCE,
        )

    def register_hook(
        self,
        phase: str,
        handler: HookHandler,
        plugin_id: str = "kernel",
        priority: int = 0,
        enabled: bool = True,
    ) -> str:
        """
        Attach a hook to a phase.

        Args:
            phase: Phase name
            handler: Zero-argument callable, may be async
            plugin_id: Owner of the hook
            priority: Higher runs first on start
            enabled: Disabled hooks are skipped

        Returns:
            Hook ID
        """
        hook = LifecycleHook(
            id=f"hook_{uuid4().hex[:12]}",
            phase=phase,
            plugin_id=plugin_id,
            handler=handler,
            priority=priority,
            enabled=enabled,
        )

        hooks = self._hooks.setdefault(phase, [])
        hooks.append(hook)
        hooks.sort(key=lambda h: h.priority, reverse=True)

        logger.debug(f"Hook registered: {hook.id} -> {phase} ({plugin_id})")
        self._event_bus.emit(
            EventType.LIFECYCLE_HOOK_REGISTERED,
            {"hook_id": hook.id, "phase": phase, "plugin_id": plugin_id},
            source=SOURCE,
        )
        return hook.id

    def unregister_hook(self, hook_id: str) -> bool:
        for phase, hooks in self._hooks.items():
            for index, hook in enumerate(hooks):
                if hook.id == hook_id:
                    del hooks[index]
                    self._event_bus.emit(
                        EventType.LIFECYCLE_HOOK_UNREGISTERED,
                        {"hook_id": hook_id, "phase": phase},
                        source=SOURCE,
                    )
                    return True
        return False

    def set_hook_enabled(self, hook_id: str, enabled: bool) -> bool:
        for hooks in self._hooks.values():
            for hook in hooks:
                if hook.id == hook_id:
                    hook.enabled = enabled
                    self._event_bus.emit(
                        EventType.LIFECYCLE_HOOK_ENABLED_CHANGED,
                        {"hook_id": hook_id, "enabled": enabled},
                        source=SOURCE,
                    )
                    return True
        return False

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """
        Run every phase in ascending order.

        Raises:
            AlreadyRunningError: If already started
            HookError: If a hook in the critical phase fails
        """
        if self._running:
            raise AlreadyRunningError("Lifecycle manager")

        self._running = True
        logger.info("Lifecycle starting")

        try:
            await self._publish(EventType.LIFECYCLE_STARTING, {})

            for phase in self.get_phases():
                await self.execute_phase(phase)

            await self._publish(EventType.LIFECYCLE_STARTED, {})
        except Exception as e:
            self._running = False
            logger.error(f"Lifecycle start failed: {e}")
            await self._publish(EventType.LIFECYCLE_START_ERROR, {"error": str(e)})
            raise

        logger.info("Lifecycle started")

    async def stop(self) -> None:
        """Run every phase in descending order with hooks reversed."""
        if not self._running:
            return

        logger.info("Lifecycle stopping")

        try:
            await self._publish(EventType.LIFECYCLE_STOPPING, {})

            for phase in reversed(self.get_phases()):
                await self.execute_phase(phase, reverse=True)

            self._running = False
            await self._publish(EventType.LIFECYCLE_STOPPED, {})
        except Exception as e:
            self._running = False
            logger.error(f"Lifecycle stop failed: {e}")
            await self._publish(EventType.LIFECYCLE_STOP_ERROR, {"error": str(e)})
            raise

        logger.info("Lifecycle stopped")

    async def execute_phase(
        self, phase: Union[str, LifecyclePhase], reverse: bool = False
    ) -> LifecycleStatus:
        """
        Run the enabled hooks of one phase.

        Args:
            phase: Phase or phase name
            reverse: Run hooks lowest priority first (shutdown)

        Returns:
            The phase's execution record
        """
        if isinstance(phase, str):
            phase = self._phases[phase]

        hooks = list(self._hooks.get(phase.name, []))
        status = LifecycleStatus(
            phase=phase.name,
            status=PhaseState.RUNNING,
            start_time=datetime.now(timezone.utc),
            hooks=hooks,
        )
        self._status[phase.name] = status

        try:
            await self._publish(EventType.LIFECYCLE_PHASE_STARTING, {"phase": phase.name})

            enabled = [h for h in hooks if h.enabled]
            if reverse:
                enabled.reverse()

            for hook in enabled:
                await self._run_hook(phase, hook)

            status.status = PhaseState.COMPLETED
            status.end_time = datetime.now(timezone.utc)

            await self._publish(EventType.LIFECYCLE_PHASE_COMPLETED, {"phase": phase.name})
        except Exception as e:
            status.status = PhaseState.ERROR
            status.end_time = datetime.now(timezone.utc)
            status.error = str(e)

            await self._publish(
                EventType.LIFECYCLE_PHASE_ERROR, {"phase": phase.name, "error": str(e)}
            )
            raise

        return status

    async def _run_hook(self, phase: LifecyclePhase, hook: LifecycleHook) -> None:
        data = {"hook_id": hook.id, "phase": phase.name, "plugin_id": hook.plugin_id}

        try:
            result = hook.handler()
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Hook {hook.id} ({hook.plugin_id}) failed in phase {phase.name}: {e}")
            await self._publish(EventType.LIFECYCLE_HOOK_ERROR, {**data, "error": str(e)})

            if phase.name == CRITICAL_PHASE:
                raise HookError(hook.id, phase.name, hook.plugin_id, str(e)) from e
            return

        await self._publish(EventType.LIFECYCLE_HOOK_COMPLETED, data)

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def get_status(self) -> List[LifecycleStatus]:
        return [self._status[p.name] for p in self.get_phases() if p.name in self._status]

    def get_phase_status(self, phase_name: str) -> Optional[LifecycleStatus]:
        return self._status.get(phase_name)

    def get_phases(self) -> List[LifecyclePhase]:
        """Phases in ascending order."""
        return sorted(self._phases.values(), key=lambda p: p.order)

    def get_hooks(self, phase_name: str) -> List[LifecycleHook]:
        return list(self._hooks.get(phase_name, []))

    def get_current_phase(self) -> Optional[str]:
        """Name of the phase currently running, if any."""
        for status in self._status.values():
            if status.status == PhaseState.RUNNING:
                return status.phase
        return None

    def is_lifecycle_running(self) -> bool:
        return self._running

    def get_statistics(self) -> Dict[str, Any]:
        """Get lifecycle statistics."""
        hooks = [h for phase_hooks in self._hooks.values() for h in phase_hooks]
        return {
            "phases": len(self._phases),
            "hooks": len(hooks),
            "enabled_hooks": sum(1 for h in hooks if h.enabled),
            "running": self._running,
        }

    async def _publish(self, event_type: EventType, data: Dict[str, Any]) -> None:
        await self._event_bus.publish(event_type, data, source=SOURCE)


# =============================================================================
# EXPORTS
# =============================================================================

__all__ = [
    "CRITICAL_PHASE",
    "DEFAULT_PHASES",
    "HookHandler",
    "PhaseState",
    "LifecyclePhase",
    "LifecycleHook",
    "LifecycleStatus",
    "LifecycleManager",
]

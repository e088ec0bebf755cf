from __future__ import annotations

from dataclasses import dataclass

from .config import Settings
from .controller import RunController
from .dispatcher import QueueDispatcher
from .events import EventLog
from .runner import ProcessRunner
from .runtime_config import RuntimeConfigStore


@dataclass
class Services:
    settings: Settings
    runtime_config: RuntimeConfigStore
    events: EventLog
    dispatcher: QueueDispatcher
    runner: ProcessRunner
    controller: RunController


def build_services(settings: Settings) -> Services:
    runtime_config = RuntimeConfigStore(settings)
    events = EventLog()
    dispatcher = QueueDispatcher()
    runner = ProcessRunner(runtime_config_store=runtime_config)
    defaults = runtime_config.get()
    controller = RunController(
        runner,
        dispatcher=dispatcher,
        events=events,
        default_factor=defaults.default_factor,
        default_fill_pattern=defaults.default_fill_pattern,
    )

    return Services(
        settings=settings,
        runtime_config=runtime_config,
        events=events,
        dispatcher=dispatcher,
        runner=runner,
        controller=controller,
    )

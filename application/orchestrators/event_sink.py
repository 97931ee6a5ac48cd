# application/orchestrators/event_sink.py
from typing import List, Optional

from domain.models.pipeline_events import EventEmitter, PipelineEvent
from shared.logging import logger


class SafeEmitter:
    """Fans events out to observers; a failing observer never affects the run"""

    def __init__(self, *observers: Optional[EventEmitter]):
        self.observers: List[EventEmitter] = [o for o in observers if o is not None]

    def __call__(self, event: PipelineEvent) -> None:
        for observer in self.observers:
            try:
                observer(event)
            except Exception as e:
                logger.warning("Event observer failed",
                              event_type=event.type.value,
                              agent=event.agent,
                              error=str(e))

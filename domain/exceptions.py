# domain/exceptions.py
from typing import Optional


class BusinessForgeError(Exception):
    """Base class for all domain errors"""


class BusinessNotFoundError(BusinessForgeError):
    def __init__(self, business_id: str):
        super().__init__("Business not found")
        self.business_id = business_id


class AgentExecutionError(BusinessForgeError):
    """Raised when an agent fails inside a pipeline run"""

    def __init__(self, agent_name: str, message: Optional[str] = None):
        super().__init__(message or "Agent failed")
        self.agent_name = agent_name


class StalenessBookkeepingError(BusinessForgeError):
    """Both the batch and the manual staleness write paths failed"""


class InvalidEditError(BusinessForgeError):
    pass


class DependencyGraphError(BusinessForgeError):
    pass

from openjragent.core.events import (
    AgentEvent as AgentEvent,
    EventEmitter as EventEmitter,
    EventType as EventType,
)
from openjragent.core.exceptions import (
    AgentError as AgentError,
    ConfigurationError as ConfigurationError,
    ErrorCategory as ErrorCategory,
    StorageError as StorageError,
)
from openjragent.core.state import (
    AgentPhase as AgentPhase,
    AgentState as AgentState,
    Plan as Plan,
    Task as Task,
    TaskStatus as TaskStatus,
)
from openjragent.core.types import Settings as Settings

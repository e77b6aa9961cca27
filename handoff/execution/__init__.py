from .config import EngineConfig, Settings, load_settings
from .context_broker import ContextBroker
from .convenience import create_orchestrator, create_test_pool, route_request
from .engine import WorkflowEngine
from .error_handler import ErrorDecision, ErrorHandler, FailureClass, Resolution, classify_failure
from .gates import QualityGateEvaluator, QualityGateResult
from .runner import Orchestrator
from .scheduler import CyclicDependencyError, Scheduler

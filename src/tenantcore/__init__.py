from .config import SharedConfig, LogLevel, load_shared_config_from_env
from .exceptions import (
    TenantCoreError,
    RejectionError,
    AuthorizationError,
    ValidationError,
    MissingConfirmationError,
    PartialFailureError,
    TotalFailureError,
    RollbackUnavailableError,
)
from .logging import (
    safe_preview,
    redact_secrets,
    safe_log_value,
    TenantCoreFormatter,
    TenantCoreLoggerAdapter,
    setup_logging,
    get_logger,
)
from .access import (
    Decision,
    Features,
    FeatureRegistry,
    Principal,
    authorize,
    build_registry,
    require_feature,
)
from .propagation import (
    PropagationEngine,
    PropagationPlan,
    PropagationRequest,
    PropagationRun,
    ScopeDescriptor,
)

__all__ = [
    'SharedConfig',
    'LogLevel',
    'load_shared_config_from_env',
    'TenantCoreError',
    'RejectionError',
    'AuthorizationError',
    'ValidationError',
    'MissingConfirmationError',
    'PartialFailureError',
    'TotalFailureError',
    'RollbackUnavailableError',
    'safe_preview',
    'redact_secrets',
    'safe_log_value',
    'TenantCoreFormatter',
    'TenantCoreLoggerAdapter',
    'setup_logging',
    'get_logger',
    'Decision',
    'Features',
    'FeatureRegistry',
    'Principal',
    'authorize',
    'build_registry',
    'require_feature',
    'PropagationEngine',
    'PropagationPlan',
    'PropagationRequest',
    'PropagationRun',
    'ScopeDescriptor',
]

# utils package
"""
Utility modules for Clever Assistant.

Modules:
    - cache: LRU response cache with TTL and JSON persistence
    - cost_controller: Budget management and cost tracking
    - token_manager: Token counting for pre-flight estimates
    - config: AssistantConfig, price table and logging setup
"""

from .cache import ResponseCache, CacheEntry, CacheStats
from .cost_controller import (
    CostController,
    CallRecord,
    BudgetStatus,
    CostEstimate
)
from .token_manager import TokenManager
from .config import (
    AssistantConfig,
    ModelPrice,
    MODEL_PRICES,
    load_config,
    setup_logging,
    get_required_env,
    get_optional_env
)

__all__ = [
    # Cache
    "ResponseCache",
    "CacheEntry",
    "CacheStats",
    # Cost Controller
    "CostController",
    "CallRecord",
    "BudgetStatus",
    "CostEstimate",
    # Token Manager
    "TokenManager",
    # Config
    "AssistantConfig",
    "ModelPrice",
    "MODEL_PRICES",
    "load_config",
    "setup_logging",
    "get_required_env",
    "get_optional_env",
]

"""
TTL configuration and endpoint-to-category mapping.
"""
import re
from enum import Enum
from typing import Any, Dict, List, Tuple


class ResourceCategory(Enum):
    """Categories of backend data with different caching behaviors."""
    PENDING_BILLS = "pending_bills"                 # Open orders awaiting payment
    WALLET_BALANCE = "wallet_balance"               # Changes on every payment
    WALLET_TRANSACTIONS = "wallet_transactions"
    PROMOTIONAL_MESSAGES = "promotional_messages"   # Editorial content, stable
    DEFAULT = "default"


# TTL Configuration by category (in seconds)
TTL_CONFIG: Dict[ResourceCategory, Dict[str, Any]] = {
    ResourceCategory.PENDING_BILLS: {
        "ttl": 300,           # 5 minutes
        "preload_ttl": 600,   # Preloaded ahead of navigation: 10 minutes
    },
    ResourceCategory.WALLET_BALANCE: {
        "ttl": 60,
        "preload_ttl": 60,
    },
    ResourceCategory.WALLET_TRANSACTIONS: {
        "ttl": 120,
        "preload_ttl": 300,
    },
    ResourceCategory.PROMOTIONAL_MESSAGES: {
        "ttl": 300,
        "preload_ttl": 900,
    },
    ResourceCategory.DEFAULT: {
        "ttl": 300,
        "preload_ttl": 300,
    },
}

# Endpoint patterns, checked in order
ENDPOINT_CATEGORIES: List[Tuple["re.Pattern[str]", ResourceCategory]] = [
    (re.compile(r"^/?api/customers/[^/]+/open-orders/?$"), ResourceCategory.PENDING_BILLS),
    (re.compile(r"^/?api/customers/[^/]+/wallet/transactions/?$"), ResourceCategory.WALLET_TRANSACTIONS),
    (re.compile(r"^/?api/customers/[^/]+/wallet(/balance)?/?$"), ResourceCategory.WALLET_BALANCE),
    (re.compile(r"^/?api/promotional-messages(/.*)?$"), ResourceCategory.PROMOTIONAL_MESSAGES),
]


def get_ttl_for_category(category: ResourceCategory, preload: bool = False) -> float:
    """
    Get the TTL for a resource category.

    Args:
        category: The resource category
        preload: True for data loaded ahead of time (longer TTL)

    Returns:
        TTL in seconds
    """
    config = TTL_CONFIG.get(category, TTL_CONFIG[ResourceCategory.DEFAULT])
    if preload:
        return float(config.get("preload_ttl", config["ttl"]))
    return float(config["ttl"])


def get_category_for_endpoint(endpoint: str) -> ResourceCategory:
    """
    Determine the resource category for an endpoint path.

    Args:
        endpoint: API endpoint path (e.g., "/api/customers/42/open-orders")

    Returns:
        ResourceCategory for caching behavior
    """
    for pattern, category in ENDPOINT_CATEGORIES:
        if pattern.match(endpoint):
            return category
    return ResourceCategory.DEFAULT


def customer_scope_pattern(customer_id: Any) -> "re.Pattern[str]":
    """Regex matching every cached endpoint belonging to one customer."""
    return re.compile(f"/api/customers/{re.escape(str(customer_id))}/")

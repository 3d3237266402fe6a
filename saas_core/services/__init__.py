from .caching_service import (
    CacheStore,
    InMemoryCacheStore,
    OrganizationCache,
    RedisCacheStore,
    get_cache_store,
    set_cache_store,
)
from .plan_catalog_service import PlanCatalogService
from .entitlement_service import EntitlementService, TrialInfo
from .usage_service import UsageService
from .organization_service import OrganizationService
from .workspace_service import WorkspaceService

__all__ = [
    "CacheStore",
    "InMemoryCacheStore",
    "OrganizationCache",
    "RedisCacheStore",
    "get_cache_store",
    "set_cache_store",
    "PlanCatalogService",
    "EntitlementService",
    "TrialInfo",
    "UsageService",
    "OrganizationService",
    "WorkspaceService",
]

from visiotech_sync.services.shopify_service import shopify_service
from visiotech_sync.services.sync_service import sync_service


def get_shopify_service():
    """Dependency for Shopify service"""
    return shopify_service


def get_sync_service():
    """Dependency for the file -> Shopify orchestration"""
    return sync_service

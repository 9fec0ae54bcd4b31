from fastapi import APIRouter, Depends
from visiotech_sync.core.config import settings
from visiotech_sync.services.shopify_service import ShopifyService
from visiotech_sync.api.deps import get_shopify_service

router = APIRouter()


@router.get("/health")
async def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": "visiotech2shopify",
        "version": settings.version
    }


@router.get("/test-connections")
async def test_connections(
    shopify_service: ShopifyService = Depends(get_shopify_service)
):
    """Test the Shopify connection"""
    results = {}
    try:
        is_connected = await shopify_service.test_connection()
        results['shopify'] = 'connected' if is_connected else 'failed'
    except Exception as e:
        results['shopify'] = f'error: {str(e)}'

    return results

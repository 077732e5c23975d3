"""
Health check script to verify the StreamPulse service and its upstream
Can be used in monitoring, CI/CD, or startup validation

    python scripts/health_check.py [base_url]
"""
import sys
import asyncio
import httpx

from streampulse.config import settings
from streampulse.ingest.client import create_proxy_client
from schemas.streams import StreamQueryParams


async def check_health(base_url: str) -> bool:
    """Test the /health endpoint"""
    try:
        async with httpx.AsyncClient(timeout=5.0) as client:
            response = await client.get(f"{base_url}/health")
            if response.status_code == 200 and response.json().get("status") == "healthy":
                print("[OK] /health endpoint working")
                return True
            print(f"[FAIL] /health returned status {response.status_code}: {response.text}")
            return False
    except httpx.ConnectError:
        print(f"[FAIL] Cannot connect to service at {base_url}")
        return False
    except Exception as e:
        print(f"[FAIL] /health check failed: {e}")
        return False


async def check_streams(base_url: str) -> bool:
    """Fetch one small page through the /api/streams proxy"""
    client = create_proxy_client(settings.model_copy(update={"proxy_base_url": base_url}))
    try:
        result = await client.fetch_page(StreamQueryParams(limit=1))
    finally:
        await client.close()

    if not result.ok:
        print(f"[FAIL] /api/streams failed: {result.error}")
        return False
    print(f"[OK] /api/streams working ({result.page.total} streams upstream)")
    return True


async def main():
    """Run all health checks"""
    base_url = (sys.argv[1] if len(sys.argv) > 1 else settings.proxy_base_url).rstrip("/")

    print("Running health checks...")
    print("=" * 50)

    health_check = await check_health(base_url)
    streams_check = await check_streams(base_url)

    print("=" * 50)
    if health_check and streams_check:
        print("[OK] All health checks passed!")
        sys.exit(0)
    else:
        print("[FAIL] Some health checks failed!")
        sys.exit(1)

if __name__ == "__main__":
    asyncio.run(main())

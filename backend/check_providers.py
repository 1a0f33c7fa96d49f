"""
Provider Diagnostic Check
Run this to see which 3D providers are configured and reachable.

    python check_providers.py              # health checks only
    python check_providers.py photo.jpg    # also run a real body scan (billed!)
"""
import asyncio
import mimetypes
import sys
from pathlib import Path

from gateway.config import configure_logging, load_provider_configs, validate_provider_keys
from gateway.errors import AllProvidersUnavailableError, GatewayTimeoutError
from gateway.orchestrator import Gateway
from gateway.schemas import BodyScanOptions, ImagePayload, ServiceState


async def check_providers(image_path=None):
    print("=" * 60)
    print("3D PROVIDER DIAGNOSTIC CHECK")
    print("=" * 60)

    missing = validate_provider_keys()
    for name in missing:
        print(f"⚠️  {name}: no API key - provider disabled")

    configs = load_provider_configs()
    if not configs:
        print("❌ FAILED: no provider has an API key")
        print("💡 Add at least one of these to backend/.env:")
        print("   OPENAI_API_KEY / REPLICATE_API_TOKEN / STABILITY_API_KEY / LUMA_API_KEY")
        return 1

    async with Gateway(configs) as gateway:
        print()
        print("TEST 1: Health checks")
        print("-" * 60)
        for status in await gateway.get_service_status():
            if status.status == ServiceState.ONLINE:
                print(f"✅ {status.provider}: online ({status.response_time:.0f} ms)")
            else:
                print(f"❌ {status.provider}: offline - {status.detail}")

        if not image_path:
            print()
            print("💡 Pass an image path to also run a body scan through the gateway")
            return 0

        print()
        print("TEST 2: Body scan")
        print("-" * 60)
        path = Path(image_path)
        mime_type = mimetypes.guess_type(path.name)[0] or "image/jpeg"
        image = ImagePayload(data=path.read_bytes(), mime_type=mime_type, name=path.name)

        try:
            model = await gateway.generate_body_model([image], BodyScanOptions(), timeout=900)
        except (AllProvidersUnavailableError, GatewayTimeoutError) as e:
            print(f"❌ FAILED: {e}")
            for attempt in getattr(e, "attempts", []):
                print(f"   {attempt}")
            return 1

        summary = gateway.summarize(model)
        print(f"✅ {summary.provider} produced {summary.id}")
        print(f"   vertices={summary.vertex_count} faces={summary.face_count}")
        if summary.download_url:
            print(f"   download: {summary.download_url}")
        if summary.is_placeholder_geometry:
            print("   ⚠️  placeholder geometry (not a reconstruction)")
        return 0


if __name__ == "__main__":
    configure_logging()
    sys.exit(asyncio.run(check_providers(sys.argv[1] if len(sys.argv) > 1 else None)))

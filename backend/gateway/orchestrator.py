"""
Generation Gateway
Routes a body-scan or clothing request across the configured 3D providers.

Providers are tried one at a time in ascending priority. A provider the rate
limiter denies is skipped outright. A provider that fails gets its declared
fallback tried once, then the walk continues down the list. The first success
wins. Total attempts are capped at twice the number of providers.
"""
import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from gateway.config import load_provider_configs
from gateway.errors import (
    AllProvidersUnavailableError,
    AttemptRecord,
    ConfigurationError,
    GatewayTimeoutError,
    ProviderResponseError,
)
from gateway.normalizer import (
    download_model_bytes,
    guess_file_type,
    hydrate_geometry,
    summarize,
    validate_geometry,
)
from gateway.rate_limiter import RateLimiter
from gateway.schemas import (
    BodyModel3D,
    BodyScanOptions,
    CanonicalModel3D,
    ClothingGenOptions,
    ClothingModel3D,
    GenerationKind,
    GenerationRequest,
    ImagePayload,
    ModelSummary,
    ProviderConfig,
    ServiceState,
    ServiceStatus,
    VideoPayload,
)
from providers.base import ProviderClient
from providers.registry import build_client

logger = logging.getLogger(__name__)

ClientFactory = Callable[[ProviderConfig], ProviderClient]


class Gateway:
    """
    Multi-provider 3D generation gateway.

    Usage:
        async with Gateway() as gateway:
            model = await gateway.generate_body_model(images, BodyScanOptions(quality="high"))
            print(gateway.summarize(model))
    """

    def __init__(
        self,
        configs: Optional[List[ProviderConfig]] = None,
        client_factory: ClientFactory = build_client,
        rate_limiter: Optional[RateLimiter] = None,
        fetch_geometry: bool = False,
    ):
        """
        Args:
            configs: provider configurations (default: from the environment)
            client_factory: builds a client per config (injectable for tests)
            rate_limiter: shared limiter (default: one built from the configs)
            fetch_geometry: download and load remote model files so URL-only
                results carry real vertex/face buffers
        """
        if configs is None:
            configs = load_provider_configs()

        # sorted() is stable: equal priorities keep configuration order
        self.configs: List[ProviderConfig] = sorted(configs, key=lambda c: c.priority)

        self.clients: Dict[str, ProviderClient] = {}
        for config in self.configs:
            if config.name in self.clients:
                raise ConfigurationError(f"provider {config.name!r} configured twice")
            self.clients[config.name] = client_factory(config)

        self.rate_limiter = rate_limiter or RateLimiter(
            {c.name: c.rate_limit for c in self.configs if c.rate_limit is not None}
        )
        self.fallbacks = self._resolve_fallbacks()
        self.fetch_geometry = fetch_geometry

        if self.configs:
            order = ", ".join(c.name for c in self.configs)
            logger.info(f"[Gateway] Provider order: {order}")
        else:
            logger.warning("[Gateway] No providers configured - every request will fail")

    def _resolve_fallbacks(self) -> Dict[str, str]:
        fallbacks: Dict[str, str] = {}
        for config in self.configs:
            if config.fallback_provider is None:
                continue
            target = config.fallback_provider.value
            if target == config.name:
                logger.warning(f"[Gateway] {config.name} lists itself as fallback - ignored")
                continue
            if target not in self.clients:
                logger.warning(
                    f"[Gateway] {config.name} fallback {target} is not configured - ignored"
                )
                continue
            fallbacks[config.name] = target
        return fallbacks

    @property
    def provider_names(self) -> List[str]:
        return [c.name for c in self.configs]

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    async def generate(
        self,
        request: GenerationRequest,
        timeout: Optional[float] = None,
    ) -> CanonicalModel3D:
        """
        Produce a canonical model for ``request``.

        Raises:
            AllProvidersUnavailableError: every provider and fallback was
                rate-limited or failed
            GatewayTimeoutError: ``timeout`` seconds elapsed first
        """
        if timeout is None:
            return await self._generate(request)
        try:
            return await asyncio.wait_for(self._generate(request), timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Gateway] {request.kind.value} request timed out after {timeout}s")
            raise GatewayTimeoutError(f"generation did not finish within {timeout}s")

    async def generate_body_model(
        self,
        images: List[ImagePayload],
        options: Optional[BodyScanOptions] = None,
        video: Optional[VideoPayload] = None,
        timeout: Optional[float] = None,
    ) -> BodyModel3D:
        return await self.generate(GenerationRequest.body(images, options, video), timeout)

    async def generate_clothing_model(
        self,
        image: ImagePayload,
        options: ClothingGenOptions,
        timeout: Optional[float] = None,
    ) -> ClothingModel3D:
        return await self.generate(GenerationRequest.clothing(image, options), timeout)

    async def _generate(self, request: GenerationRequest) -> CanonicalModel3D:
        attempts: List[AttemptRecord] = []

        for config in self.configs:
            name = config.name
            if not self.rate_limiter.allow(name):
                logger.info(f"[Gateway] {name} rate limited - skipping")
                attempts.append(AttemptRecord(name, "rate_limited"))
                continue

            model = await self._attempt(name, request, attempts)
            if model is not None:
                return model

            fallback = self.fallbacks.get(name)
            if fallback is None:
                continue
            if not self.rate_limiter.allow(fallback):
                logger.info(f"[Gateway] Fallback {fallback} rate limited - moving on")
                attempts.append(AttemptRecord(fallback, "rate_limited", via_fallback=True))
                continue

            logger.info(f"[Gateway] Trying fallback {fallback} for {name}")
            model = await self._attempt(fallback, request, attempts, via_fallback=True)
            if model is not None:
                return model

        logger.error(f"[Gateway] All providers unavailable for {request.kind.value} request: {attempts}")
        raise AllProvidersUnavailableError(attempts)

    async def _attempt(
        self,
        name: str,
        request: GenerationRequest,
        attempts: List[AttemptRecord],
        via_fallback: bool = False,
    ) -> Optional[CanonicalModel3D]:
        """Run one admitted attempt. Returns None on failure (already logged)."""
        client = self.clients[name]
        started = time.perf_counter()
        try:
            model = await self._dispatch(client, request)
            self._check_result(name, request, model)
        except Exception as e:
            self.rate_limiter.release(name)
            logger.warning(f"[Gateway] {name} failed: {e}")
            attempts.append(AttemptRecord(name, "failed", e, via_fallback))
            return None
        except BaseException:
            # cancellation: hand the reserved slot back and propagate
            self.rate_limiter.release(name)
            raise

        self.rate_limiter.record(name)
        attempts.append(AttemptRecord(name, "succeeded", via_fallback=via_fallback))
        logger.info(
            f"[Gateway] {name} succeeded in {time.perf_counter() - started:.1f}s "
            f"({model.vertex_count} vertices, {model.face_count} faces)"
        )

        if self.fetch_geometry:
            model = await self._hydrate(model)
        return model

    async def _dispatch(self, client: ProviderClient, request: GenerationRequest) -> CanonicalModel3D:
        if request.kind == GenerationKind.BODY:
            return await client.generate_body_model(request.images, request.options, request.video)
        return await client.generate_clothing_model(request.images[0], request.options)

    def _check_result(self, name: str, request: GenerationRequest, model) -> None:
        expected = BodyModel3D if request.kind == GenerationKind.BODY else ClothingModel3D
        if not isinstance(model, expected):
            raise ProviderResponseError(
                name, f"expected {expected.__name__}, got {type(model).__name__}"
            )
        try:
            validate_geometry(model.vertices, model.faces, model.normals, model.uv_coordinates)
        except ValueError as e:
            raise ProviderResponseError(name, f"invalid geometry: {e}")

    async def _hydrate(self, model: CanonicalModel3D) -> CanonicalModel3D:
        if model.vertex_count or not model.download_url:
            return model
        file_type = guess_file_type(model.download_url) or model.source_format
        if not file_type:
            return model

        producer = self.clients.get(model.provider)
        timeout = producer.config.request_timeout if producer is not None else 60.0
        try:
            data = await download_model_bytes(model.download_url, timeout)
            return await asyncio.to_thread(hydrate_geometry, model, data, file_type)
        except Exception as e:
            logger.warning(f"[Gateway] Could not load geometry for {model.id}: {e}")
            return model

    # ------------------------------------------------------------------
    # Health / summaries / lifecycle
    # ------------------------------------------------------------------

    async def get_service_status(self) -> List[ServiceStatus]:
        """Health-check every configured provider concurrently (never cached)."""
        return list(await asyncio.gather(
            *(self._check_health(name, client) for name, client in self.clients.items())
        ))

    async def _check_health(self, name: str, client: ProviderClient) -> ServiceStatus:
        started = time.perf_counter()
        try:
            await client.health_check()
        except Exception as e:
            logger.warning(f"[Gateway] {name} health check failed: {e}")
            return ServiceStatus(
                provider=name,
                status=ServiceState.OFFLINE,
                response_time=-1,
                error_rate=1.0,
                last_check=datetime.now(timezone.utc),
                detail=str(e),
            )
        return ServiceStatus(
            provider=name,
            status=ServiceState.ONLINE,
            response_time=(time.perf_counter() - started) * 1000.0,
            error_rate=0.0,
            last_check=datetime.now(timezone.utc),
        )

    @staticmethod
    def summarize(model: CanonicalModel3D) -> ModelSummary:
        return summarize(model)

    async def close(self) -> None:
        for client in self.clients.values():
            await client.close()

    async def __aenter__(self) -> "Gateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

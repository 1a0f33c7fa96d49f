"""Provider name -> client class."""
from typing import Dict, Type

from gateway.errors import ConfigurationError
from gateway.schemas import ProviderConfig, ProviderName
from providers.base import ProviderClient
from providers.gaussian_splatting import GaussianSplattingClient
from providers.luma import LumaClient
from providers.openai_vision import OpenAIVisionClient
from providers.replicate import ReplicateClient
from providers.stability import StabilityClient

PROVIDER_CLIENTS: Dict[ProviderName, Type[ProviderClient]] = {
    ProviderName.OPENAI: OpenAIVisionClient,
    ProviderName.REPLICATE: ReplicateClient,
    ProviderName.STABILITY: StabilityClient,
    ProviderName.LUMA: LumaClient,
    ProviderName.GAUSSIAN_SPLATTING: GaussianSplattingClient,
}


def build_client(config: ProviderConfig) -> ProviderClient:
    try:
        client_cls = PROVIDER_CLIENTS[ProviderName(config.provider)]
    except (KeyError, ValueError):
        raise ConfigurationError(f"no client registered for provider {config.provider!r}")
    return client_cls(config)

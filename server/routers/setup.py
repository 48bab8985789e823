"""
Provider Setup Router
=====================

API endpoints reporting provider CLI installation/auth state and letting the
user disconnect a provider from the app without logging the CLI out.

Implements:
- GET /api/setup/providers - Status of every registered provider
- GET /api/setup/providers/:name/status - Status of one provider
- POST /api/setup/providers/:name/deauth - Disconnect (writes a marker file)
- POST /api/setup/providers/:name/auth - Reconnect (removes the marker file)

A disconnected provider reports installed=true, authenticated=false until
it is reconnected. Markers live in the data directory as
.<name>-disconnected.
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Depends

from automode.config import AutoModeSettings
from automode.providers.base import BaseProvider, CliProvider
from automode.providers.factory import ProviderFactory
from automode.secure_fs import SecureFS

from ..dependencies import get_provider_factory, get_secure_fs_dep, get_settings_dep
from ..exceptions import NotFoundError
from ..schemas import AutoModeActionResponse, ProviderListResponse, ProviderStatusResponse

_logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/setup/providers", tags=["setup"])


def _marker_path(settings: AutoModeSettings, name: str) -> Path:
    return settings.data_dir / f".{name}-disconnected"


def _get_provider(factory: ProviderFactory, name: str) -> BaseProvider:
    try:
        return factory.get_provider_by_name(name)
    except KeyError:
        raise NotFoundError("provider", name) from None


async def _provider_status(
    name: str,
    provider: BaseProvider,
    settings: AutoModeSettings,
    secure_fs: SecureFS,
) -> ProviderStatusResponse:
    install_instructions = (
        provider.get_install_instructions() if isinstance(provider, CliProvider) else None
    )
    models = [m.to_dict() for m in provider.get_available_models()]

    if await secure_fs.exists(_marker_path(settings, name)):
        return ProviderStatusResponse(
            name=name,
            installed=True,
            disconnected=True,
            install_instructions=install_instructions,
            models=models,
        )

    installation = await provider.detect_installation()
    auth = await provider.check_auth()
    return ProviderStatusResponse(
        name=name,
        installed=installation.installed,
        version=installation.version,
        path=installation.path,
        authenticated=auth.authenticated,
        auth_method=auth.method,
        has_api_key=auth.has_api_key or auth.has_env_api_key,
        error=auth.error,
        install_instructions=install_instructions,
        models=models,
    )


@router.get("", response_model=ProviderListResponse)
async def list_providers(
    factory: ProviderFactory = Depends(get_provider_factory),
    settings: AutoModeSettings = Depends(get_settings_dep),
    secure_fs: SecureFS = Depends(get_secure_fs_dep),
):
    providers = [
        await _provider_status(name, factory.get_provider_by_name(name), settings, secure_fs)
        for name in factory.get_provider_names()
    ]
    return ProviderListResponse(providers=providers)


@router.get("/{name}/status", response_model=ProviderStatusResponse)
async def get_provider_status(
    name: str,
    factory: ProviderFactory = Depends(get_provider_factory),
    settings: AutoModeSettings = Depends(get_settings_dep),
    secure_fs: SecureFS = Depends(get_secure_fs_dep),
):
    provider = _get_provider(factory, name)
    return await _provider_status(name, provider, settings, secure_fs)


@router.post("/{name}/deauth", response_model=AutoModeActionResponse)
async def deauth_provider(
    name: str,
    factory: ProviderFactory = Depends(get_provider_factory),
    settings: AutoModeSettings = Depends(get_settings_dep),
    secure_fs: SecureFS = Depends(get_secure_fs_dep),
):
    provider = _get_provider(factory, name)
    display_name = getattr(provider, "display_name", name)

    await secure_fs.mkdir(settings.data_dir)
    await secure_fs.write_text(
        _marker_path(settings, name), f"{display_name} CLI disconnected from app"
    )
    _logger.info("Disconnected provider %s", name)
    return AutoModeActionResponse(success=True, message=f"{display_name} CLI disconnected from app")


@router.post("/{name}/auth", response_model=AutoModeActionResponse)
async def auth_provider(
    name: str,
    factory: ProviderFactory = Depends(get_provider_factory),
    settings: AutoModeSettings = Depends(get_settings_dep),
    secure_fs: SecureFS = Depends(get_secure_fs_dep),
):
    provider = _get_provider(factory, name)
    display_name = getattr(provider, "display_name", name)

    await secure_fs.unlink(_marker_path(settings, name), missing_ok=True)
    _logger.info("Reconnected provider %s", name)
    return AutoModeActionResponse(success=True, message=f"{display_name} CLI connected to app")

"""Tests for ServiceContainer wiring."""

import pytest

from fakes import FakeAIGenerator, FakeHosting, FakeSourceControl
from forgeflow.core.config import get_settings
from forgeflow.integrations.atlas import AtlasClient
from forgeflow.services.container import ServiceContainer

pytestmark = pytest.mark.unit


def _build(redis, settings) -> ServiceContainer:
    return ServiceContainer.build(
        redis,
        settings,
        source_control=FakeSourceControl(),
        hosting=FakeHosting(),
        generator=FakeAIGenerator(),
    )


def test_atlas_client_uses_container_settings(redis, settings):
    """Atlas credentials come from the settings handed to build()."""
    settings = settings.model_copy(update={
        "atlas_public_key": "pub-test",
        "atlas_private_key": "priv-test",
        "atlas_project_id": "group-1",
        "atlas_cluster_host": "cluster0.example.mongodb.net",
        "atlas_api_url": "https://atlas.test/api/atlas/v1.0/",
    })

    database = _build(redis, settings).workflows.deps.database

    assert isinstance(database, AtlasClient)
    assert database.public_key == "pub-test"
    assert database.project_id == "group-1"
    assert database.base_url == "https://atlas.test/api/atlas/v1.0"


def test_atlas_disabled_when_container_settings_lack_it(redis, settings, monkeypatch):
    """Environment credentials do not leak past settings that leave Atlas unset."""
    for name, value in {
        "ATLAS_PUBLIC_KEY": "env-pub",
        "ATLAS_PRIVATE_KEY": "env-priv",
        "ATLAS_PROJECT_ID": "env-group",
        "ATLAS_CLUSTER_HOST": "env.example.mongodb.net",
    }.items():
        monkeypatch.setenv(name, value)
    get_settings.cache_clear()
    try:
        database = _build(redis, settings).workflows.deps.database
    finally:
        get_settings.cache_clear()

    assert database is None

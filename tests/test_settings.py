from __future__ import annotations

import logging

import pytest

from quorumlock import (
    AsyncMemoryStore,
    AsyncRedlock,
    ConfigurationError,
    HttpStore,
    ManagerSettings,
    MemoryStore,
    RedisStore,
    Redlock,
    build_stores,
    configure_logging,
)


def test_from_file_with_section(tmp_path):
    path = tmp_path / "locks.yaml"
    path.write_text(
        "quorumlock:\n"
        "  stores:\n"
        "    - memory://a\n"
        "    - memory://b\n"
        "    - memory://c\n"
        "  retry_count: 4\n"
        "  retry_delay_ms: 50\n"
        "  clock_drift_factor: 0.02\n"
    )
    settings = ManagerSettings.from_file(path)
    assert settings.retry_count == 4
    assert settings.retry_delay_ms == 50
    assert settings.connect_timeout == 1.0
    assert settings.default_validity_ms == 1000

    with Redlock.from_settings(settings) as manager:
        assert manager.quorum == 2
        assert manager.retry_count == 4
        assert manager.clock_drift_factor == 0.02
        lock = manager.lock("orders")
        manager.unlock(lock)


def test_invalid_values_raise_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError):
        ManagerSettings.from_mapping({"stores": ["memory://a"], "clock_drift_factor": 1.0})
    with pytest.raises(ConfigurationError):
        ManagerSettings.from_mapping({"stores": []})
    with pytest.raises(ConfigurationError):
        ManagerSettings.from_mapping({"stores": ["zookeeper://zk:2181"]})

    path = tmp_path / "bad.yaml"
    path.write_text("- just\n- a list\n")
    with pytest.raises(ConfigurationError):
        ManagerSettings.from_file(path)


def test_build_stores_by_scheme():
    settings = ManagerSettings(
        stores=["redis://localhost:6379/0", "https://locks.example.com", "memory://local"],
        http_token="secret",
    )
    stores = build_stores(settings)
    try:
        assert isinstance(stores[0], RedisStore)
        assert isinstance(stores[1], HttpStore)
        assert stores[1].client.headers["Authorization"] == "Bearer secret"
        assert isinstance(stores[2], MemoryStore)
    finally:
        for store in stores:
            store.close()


@pytest.mark.asyncio
async def test_async_manager_from_settings():
    settings = ManagerSettings(stores=["memory://a", "memory://b", "memory://c"], retry_count=2)
    async with AsyncRedlock.from_settings(settings, retry_delay_ms=0) as manager:
        assert all(isinstance(store, AsyncMemoryStore) for store in manager.stores)
        assert manager.retry_delay_ms == 0
        lock = await manager.lock("orders")
        await manager.unlock(lock)


def test_configure_logging_is_idempotent():
    logger = configure_logging(logging.DEBUG, rich=False)
    handlers = list(logger.handlers)
    assert configure_logging(logging.DEBUG, rich=False) is logger
    assert logger.handlers == handlers
    assert logger.name == "quorumlock"
    for handler in handlers:
        logger.removeHandler(handler)
    logger.propagate = True

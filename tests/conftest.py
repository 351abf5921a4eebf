from __future__ import annotations

import logging
import os

import pytest
from prometheus_client import CollectorRegistry
from prometheus_client.parser import text_string_to_metric_families

from totp_code.core.config.settings import get_settings
from totp_code.core.metrics.metrics import Metrics


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    for key in list(os.environ):
        if key.startswith("TOTP_CODE_"):
            monkeypatch.delenv(key)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def restore_package_logger():
    logger = logging.getLogger("totp_code")
    handlers, level, propagate = logger.handlers[:], logger.level, logger.propagate
    yield
    logger.handlers[:] = handlers
    logger.setLevel(level)
    logger.propagate = propagate


@pytest.fixture
def metrics() -> Metrics:
    return Metrics(registry=CollectorRegistry(auto_describe=True))


def _sample_value(metrics: Metrics, metric_name: str, labels: dict[str, str] | None = None) -> float | None:
    text = metrics.render().decode("utf-8")
    target_labels = labels or {}
    for family in text_string_to_metric_families(text):
        for sample in family.samples:
            if sample.name != metric_name:
                continue
            if all(sample.labels.get(k) == v for k, v in target_labels.items()):
                return float(sample.value)
    return None


@pytest.fixture
def sample_value():
    return _sample_value

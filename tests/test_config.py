"""Tests for loading the controller configuration."""

from pathlib import Path

import pytest

from appdef.config import ControllerConfig, load_config
from appdef.exceptions import AppDefException


async def test_load_config() -> None:
    """Test values from the file override the defaults."""
    config = await load_config(Path(__file__).parent / "testdata" / "config.yaml")
    assert config.operator_name == "example-operator"
    assert config.requeue_after == 10
    assert config.watch_namespace == "podinfo"
    assert config.applier.field_manager == "example-manager"
    assert config.applier.force
    assert config.labels.managed_by == "example.com/managed-by"
    assert config.labels.application_name == "app.appdef.dev/application-name"
    assert config.conflict_requeue_after == 5.0


async def test_empty_config(tmp_path: Path) -> None:
    path = tmp_path / "config.yaml"
    path.write_text("")
    assert await load_config(path) == ControllerConfig()


def test_defaults() -> None:
    config = ControllerConfig()
    assert config.requeue_after == 30.0
    assert config.conflict_requeue_after == 5.0
    assert config.finalizer == "apps.appdef.dev/finalizer"
    assert config.watch_namespace is None


@pytest.mark.parametrize(
    ("content", "match"),
    [
        ("applier: not-a-mapping\n", "Invalid config file"),
        ("- a\n- b\n", "must contain a mapping"),
        ("applier: {force: [\n", "Invalid YAML"),
    ],
)
async def test_invalid_config(tmp_path: Path, content: str, match: str) -> None:
    path = tmp_path / "config.yaml"
    path.write_text(content)
    with pytest.raises(AppDefException, match=match):
        await load_config(path)


async def test_missing_config(tmp_path: Path) -> None:
    with pytest.raises(AppDefException, match="Failed to read config file"):
        await load_config(tmp_path / "missing.yaml")

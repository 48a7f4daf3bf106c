from __future__ import annotations

from pathlib import Path

import pytest
import textwrap
import yaml

from pcompat.config import DEFAULT_PATCH_NAMES, ConfigError, dump_default_config, load_config


def test_missing_config_yields_defaults(tmp_path: Path) -> None:
    config = load_config(tmp_path / "patch-compat.yaml")

    assert config.patches.names == list(DEFAULT_PATCH_NAMES)
    assert config.patches_directory() == (tmp_path / "patches").resolve()
    assert config.repository_root() == (Path.home() / "chromium" / "src").resolve()
    assert config.classifier.stable_patch_threshold == 100
    assert config.sandbox.branch_prefix == "test-patches-"


def test_missing_config_can_be_required(tmp_path: Path) -> None:
    with pytest.raises(ConfigError):
        load_config(tmp_path / "absent.yaml", required=True)


def test_overrides_resolve_relative_to_config(tmp_path: Path) -> None:
    config_path = tmp_path / "conf" / "patch-compat.yaml"
    config_path.parent.mkdir()
    config_path.write_text(
        textwrap.dedent(
            """
            repository:
              root: ../checkout
            patches:
              directory: ../stack
              names: [first.patch, second.patch]
            classifier:
              stable_patch_threshold: 50
              canary_major: 143
            logging:
              level: info
            """
        ).strip()
        + "\n",
        encoding="utf-8",
    )

    config = load_config(config_path)

    assert config.repository_root() == (tmp_path / "checkout").resolve()
    assert config.patches_directory() == (tmp_path / "stack").resolve()
    assert config.patches.names == ["first.patch", "second.patch"]
    assert config.classifier.canary_major == 143
    assert config.logging.level == "INFO"


def test_null_names_means_discover(tmp_path: Path) -> None:
    config_path = tmp_path / "patch-compat.yaml"
    config_path.write_text("patches:\n  names: null\n", encoding="utf-8")

    assert load_config(config_path).patches.names is None


@pytest.mark.parametrize(
    "payload",
    [
        "repository: [not, a, mapping]\n",
        "unknown_section: {}\n",
        "patches:\n  names: [a.patch, a.patch]\n",
        "logging:\n  level: LOUD\n",
        "- just\n- a list\n",
        "repository: {root: [unclosed\n",
        "base_dir: /tmp\n",
    ],
)
def test_invalid_configs_raise_config_error(tmp_path: Path, payload: str) -> None:
    config_path = tmp_path / "patch-compat.yaml"
    config_path.write_text(payload, encoding="utf-8")

    with pytest.raises(ConfigError):
        load_config(config_path)


def test_default_config_round_trips(tmp_path: Path) -> None:
    rendered = dump_default_config()
    data = yaml.safe_load(rendered)
    assert "base_dir" not in data
    assert data["patches"]["names"] == list(DEFAULT_PATCH_NAMES)

    config_path = tmp_path / "patch-compat.yaml"
    config_path.write_text(rendered, encoding="utf-8")
    assert load_config(config_path).report.diagnostic_lines == 20

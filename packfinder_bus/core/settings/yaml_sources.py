"""YAML config sources with conf.d directory support.

Each settings domain reads ``conf/<name>.yaml`` followed by the files in
``conf/<name>.d/`` in alphabetical order. The base directory can be moved
per domain with ``<NAME>_CONFIG_DIR``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source that merges ``<name>.yaml`` and ``<name>.d/*.yaml``."""

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        name: str,
        *,
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        """Initialize the conf.d YAML source.

        Args:
            settings_cls: The settings class being configured.
            name: Domain name (``db``, ``redis``, ``publisher``...).
            base_dir: Default base directory for config files.
            yaml_file_encoding: File encoding for YAML files.
        """
        config_base = Path(os.getenv(f"{name.upper()}_CONFIG_DIR", base_dir))

        yaml_files: list[Path] = []
        main_file = config_base / f"{name}.yaml"
        if main_file.exists():
            yaml_files.append(main_file)

        confd_path = config_base / f"{name}.d"
        if confd_path.is_dir():
            yaml_files.extend(sorted(confd_path.glob("*.yaml")))
            yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files or None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        """Return summary of configured YAML files."""
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


def create_yaml_source(
    settings_cls: type[BaseSettings], name: str
) -> ConfDYamlConfigSettingsSource:
    """Create the YAML source for one settings domain.

    Loads from:
    - conf/<name>.yaml (base)
    - conf/<name>.d/*.yaml (overrides)

    Override directory with: <NAME>_CONFIG_DIR=/custom/path
    """
    return ConfDYamlConfigSettingsSource(settings_cls, name)


__all__ = ["ConfDYamlConfigSettingsSource", "create_yaml_source"]

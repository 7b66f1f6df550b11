from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

DEFAULT_LABEL_PREFIX = "needs-cherry-pick-"


class ConfigError(Exception):
    """Raised when the configuration file cannot be loaded."""

    pass


class CherrypickerOptions(BaseModel):
    """Per org or per repo cherrypicker settings."""

    model_config = ConfigDict(populate_by_name=True)

    # Either org/repo or just org.
    repos: list[str] = Field(default_factory=list)
    allow_all: bool = False
    issue_on_conflict: bool = Field(default=False, alias="create_issue_on_conflict")
    label_prefix: str = DEFAULT_LABEL_PREFIX
    picked_label_prefix: str = ""
    exclude_labels: list[str] = Field(default_factory=list, alias="excludeLabels")
    copy_issue_numbers_from_squashed_commit: bool = False


class Configuration(BaseModel):
    cherrypicker: list[CherrypickerOptions] = Field(default_factory=list)

    def cherrypicker_for(self, org: str, repo: str) -> CherrypickerOptions:
        """Find the options for a repository.

        Repository entries win over org entries. Unconfigured repositories get
        the defaults.
        """
        full_name = f"{org}/{repo}"
        for options in self.cherrypicker:
            if full_name in options.repos:
                return options
        for options in self.cherrypicker:
            if org in options.repos:
                return options
        return CherrypickerOptions()


def load_config(path: str | Path) -> Configuration:
    """Load the YAML configuration file.

    Args:
        path: Path to the configuration file.

    Returns:
        Parsed configuration.

    Raises:
        ConfigError: If the file is missing, malformed, or invalid.
    """
    try:
        raw = yaml.safe_load(Path(path).read_text())
    except OSError as e:
        raise ConfigError(f"cannot read config {path}: {e.strerror}")
    except yaml.YAMLError as e:
        raise ConfigError(f"cannot parse config {path}: {e}")

    try:
        return Configuration.model_validate(raw or {})
    except ValidationError as e:
        raise ConfigError(f"invalid config {path}: {e}")

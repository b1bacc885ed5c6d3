"""
Configuration Module
Defines orchestrator settings, environment variables and the confirmation
policy shared by headless and interactive drivers.
"""

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .constants import (
    DEFAULT_ACCESS_POLICY_CONFIGMAP,
    DEFAULT_APPLICATION_NAMESPACES,
    DEFAULT_BACKUP_DIR,
    DEFAULT_BACKUP_RETENTION,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_CREDENTIALS_FILE,
    DEFAULT_HEALTH_TIMEOUT,
    DEFAULT_KUBECTL,
    DEFAULT_NAMESPACE,
    DEFAULT_OVERLAYS_DIR,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECREATE_TIMEOUT,
    DEFAULT_VERSION_DEPLOYMENT,
)
from .exceptions import CatalogError

DEFAULT_CATALOG_PATH = Path(__file__).resolve().parent.parent / "catalog" / "releases.yaml"

# --- Environment Configuration Guide ---
# Every field can be overridden with UPGRADE_<FIELD_NAME>, for example
# UPGRADE_NAMESPACE=argocd or UPGRADE_AUTO_CONFIRM=true.
ENV_PREFIX = "UPGRADE_"

ConfirmationCallback = Callable[[str, Dict[str, Any]], bool]


class OrchestratorSettings(BaseModel):
    """Settings for one orchestrator run against one target system."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    namespace: str = Field(default=DEFAULT_NAMESPACE, description="Target namespace")
    catalog_path: Path = Field(
        default=DEFAULT_CATALOG_PATH, description="Release catalog YAML"
    )
    overlays_dir: Path = Field(
        default=Path(DEFAULT_OVERLAYS_DIR), description="Root of per-version overlays"
    )
    backup_dir: Path = Field(
        default=Path(DEFAULT_BACKUP_DIR), description="Root of backup snapshots"
    )
    credentials_file: Path = Field(
        default=Path(DEFAULT_CREDENTIALS_FILE),
        description="Externally provisioned admin credentials (read only)",
    )
    version_deployment: str = Field(
        default=DEFAULT_VERSION_DEPLOYMENT,
        description="Deployment whose image tag reports the running version",
    )
    access_policy_configmap: str = Field(
        default=DEFAULT_ACCESS_POLICY_CONFIGMAP,
        description="ConfigMap holding the access policy",
    )
    application_namespaces: List[str] = Field(
        default_factory=lambda: list(DEFAULT_APPLICATION_NAMESPACES),
        description="Application namespaces removed on uninstall",
    )
    health_timeout: int = Field(default=DEFAULT_HEALTH_TIMEOUT, ge=1)
    poll_interval: float = Field(default=DEFAULT_POLL_INTERVAL, gt=0)
    recreate_timeout: int = Field(default=DEFAULT_RECREATE_TIMEOUT, ge=1)
    command_timeout: int = Field(default=DEFAULT_COMMAND_TIMEOUT, ge=1)
    backup_retention: int = Field(default=DEFAULT_BACKUP_RETENTION, ge=1)
    kubectl: str = Field(default=DEFAULT_KUBECTL, description="kubectl binary")
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    auto_confirm: bool = Field(
        default=False, description="Answer every confirmation prompt with yes"
    )
    confirmation_callback: Optional[ConfirmationCallback] = Field(
        default=None, exclude=True, description="Interactive confirmation hook"
    )

    @field_validator("application_namespaces", mode="before")
    @classmethod
    def split_namespaces(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [ns.strip() for ns in value.split(",") if ns.strip()]
        return value

    @classmethod
    def from_env(cls, **overrides: Any) -> "OrchestratorSettings":
        """Build settings from UPGRADE_* environment variables."""
        values: Dict[str, Any] = {}
        for name in cls.model_fields:
            if name == "confirmation_callback":
                continue
            raw = os.getenv(f"{ENV_PREFIX}{name.upper()}")
            if raw is not None:
                values[name] = raw
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @classmethod
    def from_file(cls, path: Path, **overrides: Any) -> "OrchestratorSettings":
        """Build settings from a YAML file, environment overrides applied on top."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise CatalogError(
                f"Cannot read settings file {path}: {e}",
                "Check the path and YAML syntax of the settings file",
            )
        env = cls.from_env().model_dump(exclude_unset=True)
        data.update(env)
        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)

    def confirmation_policy(self) -> "ConfirmationPolicy":
        return ConfirmationPolicy(self.auto_confirm, self.confirmation_callback)


class ConfirmationPolicy:
    """
    Decides "confirm and continue" prompts without touching a terminal.

    Headless drivers set auto_confirm; interactive drivers pass a callback
    that asks the operator. With neither, every prompt is declined.
    """

    def __init__(
        self,
        auto_confirm: bool = False,
        callback: Optional[ConfirmationCallback] = None,
    ):
        self.auto_confirm = auto_confirm
        self.callback = callback

    def confirm(self, prompt: str, details: Optional[Dict[str, Any]] = None) -> bool:
        if self.auto_confirm:
            return True
        if self.callback is None:
            return False
        return bool(self.callback(prompt, details or {}))

"""Runtime settings read from the environment (and ``.env`` via python-dotenv)."""

from __future__ import annotations

import os
from dataclasses import dataclass

from errors import ConfigError
from pool import DEFAULT_WORKERS

GITHUB_API_URL = "https://api.github.com"
DEFAULT_TEAM_ID = 1836975
DEFAULT_PROVIDERS_ORG = "terraform-providers"
DEFAULT_CORE_REPO = "hashicorp/terraform"

# Fallback allow-list used when TFTEAM_TEAM_MEMBERS is not set.
DEFAULT_TEAM_MEMBERS: tuple[str, ...] = (
    "mitchellh",
    "apparentlymart",
    "jbardin",
    "phinze",
    "paddycarver",
    "catsby",
    "radeksimko",
    "tombuildsstuff",
    "grubernaut",
    "mbfrahry",
    "vancluever",
)
DEFAULT_EXCLUDED_MEMBERS: tuple[str, ...] = ("hashicorp-fossa", "tf-release-bot")
DEFAULT_ACCEPTED_REPOS: tuple[str, ...] = ("terraform", "tfteam", "tf-deploy")

# Repositories searched by `triage` and `waiting` unless --all/--type=all is given.
HASHI_PROVIDER_REPOS: tuple[str, ...] = (
    "terraform-providers/terraform-provider-aws",
    "terraform-providers/terraform-provider-azurerm",
    "terraform-providers/terraform-provider-consul",
    "terraform-providers/terraform-provider-google",
    "terraform-providers/terraform-provider-kubernetes",
    "terraform-providers/terraform-provider-nomad",
    "terraform-providers/terraform-provider-opc",
    "terraform-providers/terraform-provider-vault",
    "terraform-providers/terraform-provider-vsphere",
)


@dataclass(frozen=True, slots=True)
class Settings:
    """Immutable per-process configuration."""

    token: str
    api_url: str = GITHUB_API_URL
    workers: int = DEFAULT_WORKERS
    team_id: int = DEFAULT_TEAM_ID
    team_members: tuple[str, ...] = DEFAULT_TEAM_MEMBERS
    excluded_members: tuple[str, ...] = DEFAULT_EXCLUDED_MEMBERS
    accepted_repos: tuple[str, ...] = DEFAULT_ACCEPTED_REPOS
    providers_org: str = DEFAULT_PROVIDERS_ORG
    core_repo: str = DEFAULT_CORE_REPO


def load_settings(environ: dict[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Raises:
        ConfigError: GITHUB_API_TOKEN is unset or a numeric variable is malformed.
    """
    env = os.environ if environ is None else environ

    token = env.get("GITHUB_API_TOKEN", "").strip()
    if not token:
        raise ConfigError("Missing API Token!")

    return Settings(
        token=token,
        api_url=env.get("GITHUB_API_URL", GITHUB_API_URL).rstrip("/"),
        workers=_as_int(env, "TFTEAM_WORKERS", DEFAULT_WORKERS),
        team_id=_as_int(env, "TFTEAM_TEAM_ID", DEFAULT_TEAM_ID),
        team_members=_as_list(env, "TFTEAM_TEAM_MEMBERS", DEFAULT_TEAM_MEMBERS),
        excluded_members=_as_list(env, "TFTEAM_EXCLUDED_MEMBERS", DEFAULT_EXCLUDED_MEMBERS),
        accepted_repos=_as_list(env, "TFTEAM_ACCEPTED_REPOS", DEFAULT_ACCEPTED_REPOS),
        providers_org=env.get("TFTEAM_PROVIDERS_ORG", DEFAULT_PROVIDERS_ORG),
        core_repo=env.get("TFTEAM_CORE_REPO", DEFAULT_CORE_REPO),
    )


def _as_int(env, key: str, default: int) -> int:
    raw = env.get(key)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(f"{key} must be an integer, got {raw!r}") from exc
    if value < 1:
        raise ConfigError(f"{key} must be >= 1, got {value}")
    return value


def _as_list(env, key: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = env.get(key)
    if raw is None:
        return default
    return tuple(part.strip() for part in raw.split(",") if part.strip())

from __future__ import annotations

import os
from pathlib import Path


TOKEN_ENV_VARS = ("GITHUB_TOKEN", "GH_TOKEN")
SSH_PUBLIC_KEY_CANDIDATES = (
    "id_ed25519.pub",
    "id_ecdsa.pub",
    "id_rsa.pub",
)


def resolve_github_token(config_token: str | None = None) -> str | None:
    """Resolve a GitHub token from env, config, or the `gh` CLI hosts file."""
    for env_name in TOKEN_ENV_VARS:
        value = os.getenv(env_name, "").strip()
        if value:
            return value

    if config_token and config_token.strip():
        return config_token.strip()

    for path in _gh_hosts_candidates():
        try:
            if path.is_file():
                value = _token_from_gh_hosts(path.read_text(encoding="utf-8"))
                if value:
                    return value
        except OSError:
            continue

    return None


def _gh_hosts_candidates() -> list[Path]:
    candidates: list[Path] = []
    gh_config_dir = os.getenv("GH_CONFIG_DIR")
    if gh_config_dir:
        candidates.append(Path(gh_config_dir) / "hosts.yml")

    xdg_config_home = os.getenv("XDG_CONFIG_HOME")
    if xdg_config_home:
        candidates.append(Path(xdg_config_home) / "gh" / "hosts.yml")

    candidates.append(Path.home() / ".config" / "gh" / "hosts.yml")
    return candidates


def _token_from_gh_hosts(text: str) -> str | None:
    # Only the github.com block is relevant; newer gh versions keep the token in
    # the system keyring and leave no `oauth_token` line here.
    in_github = False
    for raw in text.splitlines():
        if not raw.strip() or raw.lstrip().startswith("#"):
            continue
        if not raw.startswith((" ", "\t")):
            in_github = raw.rstrip().rstrip(":") == "github.com"
            continue
        key, _, value = raw.strip().partition(":")
        if in_github and key == "oauth_token" and value.strip():
            return value.strip().strip("'\"")
    return None


def detect_ssh_public_keys() -> list[Path]:
    ssh_dir = Path.home() / ".ssh"
    if not ssh_dir.is_dir():
        return []
    candidates = [ssh_dir / name for name in SSH_PUBLIC_KEY_CANDIDATES]
    return sorted(path for path in candidates if path.is_file())


def missing_token_hint() -> str:
    hint = (
        "This command requires a GitHub token with `contents: write` access. "
        "Set `GITHUB_TOKEN`, run `gh auth login`, or update `.gitvault.json`."
    )
    if detect_ssh_public_keys():
        hint += (
            " SSH keys were found, but gitvault talks to the GitHub REST API, which does not "
            "accept SSH keys."
        )
    return hint

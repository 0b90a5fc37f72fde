from __future__ import annotations

import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from urllib.parse import urlparse


CONFIG_FILENAME = ".gitvault.json"
STATE_DB_FILENAME = ".gitvault_state.db"
DEFAULT_BRANCH = "main"
DEFAULT_API_URL = "https://api.github.com"
GITHUB_HOSTS = {"github.com", "www.github.com"}


@dataclass(slots=True)
class GitVaultConfig:
    repo: str
    local_root: str
    branch: str = DEFAULT_BRANCH
    token: str = ""
    api_url: str = DEFAULT_API_URL
    include: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)

    @property
    def local_root_path(self) -> Path:
        return Path(self.local_root).resolve()

    @property
    def state_db_path(self) -> Path:
        return self.local_root_path / STATE_DB_FILENAME

    @property
    def owner(self) -> str:
        return self.repo.split("/", 1)[0]

    @property
    def name(self) -> str:
        return self.repo.split("/", 1)[1]


def config_path(base_dir: Path | None = None) -> Path:
    return (base_dir or Path.cwd()).resolve() / CONFIG_FILENAME


def load_config(base_dir: Path | None = None) -> GitVaultConfig:
    path = config_path(base_dir)
    if not path.exists():
        raise FileNotFoundError(
            f"Config file not found: {path}. Run `gv init <owner/repo>` first."
        )

    with path.open("r", encoding="utf-8") as fh:
        data = json.load(fh)

    repo = normalize_repo_id(data["repo"])
    if repo.count("/") != 1:
        raise ValueError(f"Invalid repo in {path}: {data['repo']!r}. Expected `owner/name`.")

    return GitVaultConfig(
        repo=repo,
        local_root=data["local_root"],
        branch=data.get("branch") or DEFAULT_BRANCH,
        token=data.get("token", ""),
        api_url=(data.get("api_url") or DEFAULT_API_URL).rstrip("/"),
        include=list(data.get("include") or []),
        exclude=list(data.get("exclude") or []),
    )


def save_config(config: GitVaultConfig, base_dir: Path | None = None) -> Path:
    path = config_path(base_dir)
    payload = asdict(config)
    payload["repo"] = normalize_repo_id(str(payload["repo"]))
    with path.open("w", encoding="utf-8") as fh:
        json.dump(payload, fh, indent=2)
        fh.write("\n")
    return path


def normalize_repo_id(repo_id: str) -> str:
    """Reduce GitHub URLs and SSH remotes to ``owner/name``."""
    value = (repo_id or "").strip()
    if not value:
        return value

    # scp-like SSH form (`git@github.com:owner/repo.git`)
    if value.startswith("git@github.com:"):
        return _normalize_github_path(value.split(":", 1)[1])

    if "://" not in value:
        return _strip_git_suffix(value.strip("/"))

    parsed = urlparse(value)
    if parsed.hostname not in GITHUB_HOSTS:
        return value
    return _normalize_github_path(parsed.path)


def _strip_git_suffix(path: str) -> str:
    return path[:-4] if path.endswith(".git") else path


def _normalize_github_path(path: str) -> str:
    parts = [part for part in _strip_git_suffix(path.strip("/")).split("/") if part]
    if len(parts) >= 2:
        # Web URLs may continue with /tree/<branch>/... after owner/repo.
        return f"{parts[0]}/{_strip_git_suffix(parts[1])}"
    return "/".join(parts)

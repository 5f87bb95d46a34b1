# grit_config: project configuration and credential lookup
#
# Config lives in .grit/config.yaml at the project root, e.g.
#
#   version: 1
#   project:
#     owner: acme
#     repo: widgets
#     issue_prefix: "[web] "      # optional, prepended to LLM titles
#     labels: [bug, feature]      # optional allow-list for LLM suggestions
#   llm:
#     provider: anthropic         # none | anthropic | ollama
#     model: claude-sonnet-4-20250514
#   ui:
#     per_page: 20
#     style:                      # optional prompt_toolkit style overrides
#       header: "bold #ffffff bg:#5f5faf"
#
# Environment
# - GRIT_PAT or GITHUB_TOKEN (scopes: repo)
# - GRIT_LLM_KEY (Anthropic API key)

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional

import yaml

logger = logging.getLogger('grit')

DIR_NAME = ".grit"
CONFIG_FILE = "config.yaml"
TOKEN_ENV_VARS = ("GRIT_PAT", "GITHUB_TOKEN")
DOTENV_TOKEN_KEYS = ("GRIT_PAT", "GITHUB_TOKEN", "TOKEN")
LLM_KEY_ENV = "GRIT_LLM_KEY"
LLM_PROVIDERS = ("none", "anthropic", "ollama")
DEFAULT_MODELS = {
    "anthropic": "claude-sonnet-4-20250514",
    "ollama": "llama3.2",
}


# -----------------------------
# Config models
# -----------------------------
@dataclass
class ProjectConfig:
    owner: str
    repo: str
    issue_prefix: str = ""
    labels: List[str] = field(default_factory=list)
    assignees: List[str] = field(default_factory=list)

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


@dataclass
class LLMConfig:
    provider: str = "none"
    model: str = ""
    base_url: str = ""


@dataclass
class UIConfig:
    per_page: int = 20
    style: Dict[str, str] = field(default_factory=dict)


@dataclass
class Config:
    project: ProjectConfig
    llm: LLMConfig = field(default_factory=LLMConfig)
    ui: UIConfig = field(default_factory=UIConfig)
    version: int = 1
    root: str = ""

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data.pop("root", None)
        return data


def _str_list(raw: object) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, str):
        return [p.strip() for p in raw.split(",") if p.strip()]
    if isinstance(raw, list):
        return [str(p).strip() for p in raw if str(p).strip()]
    raise ValueError(f"Config: expected a list, got {raw!r}")


def parse_config(raw: Optional[dict], root: str = "") -> Config:
    raw = raw or {}
    if not isinstance(raw, dict):
        raise ValueError("Config: top level must be a mapping")
    prj = raw.get("project") or {}
    owner = str(prj.get("owner") or "").strip()
    repo = str(prj.get("repo") or "").strip()
    if not owner or not repo:
        raise ValueError("Config: 'project.owner' and 'project.repo' are required.")
    project = ProjectConfig(
        owner=owner,
        repo=repo,
        issue_prefix=str(prj.get("issue_prefix") or ""),
        labels=_str_list(prj.get("labels")),
        assignees=_str_list(prj.get("assignees")),
    )

    llm_raw = raw.get("llm") or {}
    provider = str(llm_raw.get("provider") or "none").strip().lower()
    if provider not in LLM_PROVIDERS:
        raise ValueError(f"Config: unknown llm.provider {provider!r} (expected one of {', '.join(LLM_PROVIDERS)})")
    llm = LLMConfig(
        provider=provider,
        model=str(llm_raw.get("model") or DEFAULT_MODELS.get(provider, "")),
        base_url=str(llm_raw.get("base_url") or ""),
    )

    ui_raw = raw.get("ui") or {}
    try:
        per_page = int(ui_raw.get("per_page") or 20)
    except (TypeError, ValueError):
        raise ValueError(f"Config: ui.per_page must be an integer, got {ui_raw.get('per_page')!r}")
    per_page = max(1, min(100, per_page))
    style: Dict[str, str] = {}
    overrides = ui_raw.get("style")
    if isinstance(overrides, dict):
        for key, value in overrides.items():
            if isinstance(key, str) and isinstance(value, str):
                style[key] = value
    return Config(
        project=project,
        llm=llm,
        ui=UIConfig(per_page=per_page, style=style),
        version=int(raw.get("version") or 1),
        root=root,
    )


def config_path(root: str) -> str:
    return os.path.join(root, DIR_NAME, CONFIG_FILE)


def find_root(start: Optional[str] = None) -> str:
    """Walk up from ``start`` (default: cwd) to the first directory holding .grit/config.yaml."""
    current = os.path.abspath(start or os.getcwd())
    while True:
        if os.path.isfile(config_path(current)):
            return current
        parent = os.path.dirname(current)
        if parent == current:
            raise FileNotFoundError("not a grit project (no .grit directory found); run 'grit --init OWNER/REPO'")
        current = parent


def load_config(path: Optional[str] = None) -> Config:
    if path:
        cfg_file = os.path.abspath(path)
        parent = os.path.dirname(cfg_file)
        root = os.path.dirname(parent) if os.path.basename(parent) == DIR_NAME else parent
    else:
        root = find_root()
        cfg_file = config_path(root)
    with open(cfg_file, "r", encoding="utf-8") as f:
        try:
            raw = yaml.safe_load(f)
        except yaml.YAMLError as exc:
            raise ValueError(f"Config: cannot parse {cfg_file}: {exc}") from exc
    return parse_config(raw, root=root)


def dump_config(cfg: Config) -> str:
    return yaml.safe_dump(cfg.to_dict(), sort_keys=False, allow_unicode=True)


def init_project(root: str, full_name: str, provider: str = "none") -> str:
    """Write a starter config (and .gitignore) under ``root``; returns the config path."""
    if "/" not in (full_name or ""):
        raise ValueError("Repository must be in owner/name format")
    owner, repo = (p.strip() for p in full_name.split("/", 1))
    if not owner or not repo:
        raise ValueError("Repository must be in owner/name format")
    provider = (provider or "none").lower()
    cfg = parse_config({
        "project": {"owner": owner, "repo": repo},
        "llm": {"provider": provider},
    }, root=root)
    path = config_path(root)
    if os.path.exists(path):
        raise FileExistsError(f"{path} already exists")
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(dump_config(cfg))
    with open(os.path.join(root, DIR_NAME, ".gitignore"), "w", encoding="utf-8") as f:
        f.write("# Ignore credential and log files\n.env\n*.log\n")
    return path


# -----------------------------
# Credentials
# -----------------------------
def _read_dotenv(keys, search_dirs: List[str]) -> Optional[str]:
    for base in search_dirs:
        if not base:
            continue
        path = os.path.join(base, ".env")
        if not os.path.isfile(path):
            continue
        try:
            with open(path, "r", encoding="utf-8") as f:
                for line in f:
                    line = line.strip()
                    if not line or line.startswith('#') or '=' not in line:
                        continue
                    k, v = line.split('=', 1)
                    k = k.strip()
                    v = v.strip().strip('"').strip("'")
                    if k in keys and v:
                        return v
        except OSError:
            logger.warning("Unable to read %s", path, exc_info=True)
            continue
    return None


def load_token(cfg: Optional[Config] = None) -> Optional[str]:
    """GitHub token: GRIT_PAT, GITHUB_TOKEN, then .env in cwd or the project root."""
    for name in TOKEN_ENV_VARS:
        value = os.environ.get(name)
        if value:
            return value
    dirs = [os.getcwd()]
    if cfg is not None and cfg.root:
        dirs.extend([cfg.root, os.path.join(cfg.root, DIR_NAME)])
    return _read_dotenv(DOTENV_TOKEN_KEYS, dirs)


def load_llm_key(cfg: Optional[Config] = None) -> Optional[str]:
    value = os.environ.get(LLM_KEY_ENV)
    if value:
        return value
    dirs = [os.getcwd()]
    if cfg is not None and cfg.root:
        dirs.extend([cfg.root, os.path.join(cfg.root, DIR_NAME)])
    return _read_dotenv((LLM_KEY_ENV,), dirs)

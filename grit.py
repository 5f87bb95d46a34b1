#!/usr/bin/env python3
"""
grit: terminal browser for one GitHub repository's issues.

Usage
  grit                          # run the UI for the nearest .grit/config.yaml
  grit --init OWNER/REPO        # write a starter config in the current directory
  grit --show-config            # print the resolved config
  grit --check-auth             # verify the token against the repository
  MOCK_FETCH=1 grit             # offline demo data, no token needed

Environment
- GRIT_PAT or GITHUB_TOKEN (scopes: repo); a .env file with either also works
- GRIT_LLM_KEY for the Anthropic provider
"""
from __future__ import annotations

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from types import MappingProxyType
from typing import List, Optional

from grit_app import run
from grit_config import (
    LLM_PROVIDERS, Config, dump_config, init_project, load_config, load_llm_key, load_token,
)
from grit_github import GitHubError, IssueClient, MockIssueClient
from grit_llm import LLMError, build_llm_client
from grit_tui import KEYMAP, Dependencies
from grit_view import build_style

__version__ = "0.3.0"

logger = logging.getLogger('grit')


def setup_logging(log_level: str = "ERROR", log_path: Optional[str] = None) -> str:
    """Attach the rotating file handler; the logger itself stays at DEBUG."""
    if not log_path:
        log_path = os.path.join(os.path.expanduser("~"), ".grit.log")
    # Always reset handlers so --log-level reliably controls file output.
    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()
    logger.setLevel(logging.DEBUG)
    fh = RotatingFileHandler(log_path, maxBytes=2000000, backupCount=2, encoding='utf-8')
    lvl = getattr(logging, str(log_level).upper(), None)
    fh.setLevel(lvl if isinstance(lvl, int) else logging.ERROR)
    fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s'))
    logger.addHandler(fh)
    return log_path


def build_dependencies(cfg: Config, mock: bool = False) -> Dependencies:
    if mock:
        github = MockIssueClient(cfg.project.owner, cfg.project.repo)
        logger.info("using mock issue data for %s", cfg.project.full_name)
    else:
        token = load_token(cfg)
        if not token:
            raise RuntimeError("no GitHub token found; set GRIT_PAT or GITHUB_TOKEN (or add it to .env)")
        github = IssueClient(cfg.project.owner, cfg.project.repo, token)
    try:
        llm = build_llm_client(cfg.llm, load_llm_key(cfg))
    except LLMError as exc:
        logger.warning("LLM features disabled: %s", exc)
        llm = None
    return Dependencies(
        config=cfg,
        github=github,
        llm=llm,
        keys=KEYMAP,
        style=MappingProxyType(build_style(cfg.ui.style)),
    )


def mask_token(token: str) -> str:
    if len(token) <= 8:
        return "****"
    return f"{token[:4]}...{token[-4:]}"


def check_auth(cfg: Config) -> int:
    """Report whether the token can read the repository, plus the LLM setup."""
    ok = True
    token = load_token(cfg)
    if not token:
        print("GitHub: not authenticated (no token found; set GRIT_PAT or GITHUB_TOKEN)")
        ok = False
    else:
        client = IssueClient(cfg.project.owner, cfg.project.repo, token)
        try:
            name = client.check_access()
        except GitHubError as exc:
            logger.error("auth check failed: %s", exc)
            print(f"GitHub: not authenticated ({exc})")
            ok = False
        else:
            print(f"GitHub: authenticated ({mask_token(token)}) for {name}")

    if cfg.llm.provider == "none":
        print("LLM: none (AI features disabled)")
    else:
        print(f"LLM: {cfg.llm.provider} ({cfg.llm.model})")
        if cfg.llm.provider == "ollama":
            print("  No API key required for Ollama")
        elif not load_llm_key(cfg):
            print("  no API key found; set GRIT_LLM_KEY")
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="grit", description="Terminal browser for GitHub issues")
    ap.add_argument("--config", help="Path to .grit/config.yaml (default: search upward from cwd)")
    ap.add_argument("--log-level", default="ERROR", help="File log level (DEBUG, INFO, WARNING, ERROR)")
    ap.add_argument("--log-file", help="Log file path (default: ~/.grit.log)")
    ap.add_argument("--mock", action="store_true", help="Use in-memory demo issues instead of GitHub")
    ap.add_argument("--show-config", action="store_true", help="Print the resolved config and exit")
    ap.add_argument("--check-auth", action="store_true", help="Check the GitHub token and LLM settings, then exit")
    ap.add_argument("--init", metavar="OWNER/REPO", help="Create .grit/config.yaml in the current directory and exit")
    ap.add_argument("--provider", default="none", choices=list(LLM_PROVIDERS), help="LLM provider for --init")
    ap.add_argument("--version", action="version", version=f"grit {__version__}")
    return ap


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    if args.init:
        try:
            path = init_project(os.getcwd(), args.init, args.provider)
        except (ValueError, OSError) as exc:
            print(f"error: {exc}", file=sys.stderr)
            return 1
        print(f"Wrote {path}")
        return 0

    try:
        cfg = load_config(args.config)
    except (ValueError, OSError) as exc:
        logger.error("config: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1

    if args.show_config:
        print(dump_config(cfg), end="")
        return 0

    if args.check_auth:
        return check_auth(cfg)

    mock = args.mock or os.environ.get("MOCK_FETCH") == "1"
    try:
        deps = build_dependencies(cfg, mock=mock)
    except RuntimeError as exc:
        logger.error("startup: %s", exc)
        print(f"error: {exc}", file=sys.stderr)
        return 1

    try:
        run(deps)
    except Exception as exc:
        logger.exception("UI terminated")
        print(f"error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())

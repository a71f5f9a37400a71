import os
from pathlib import Path
from typing import Optional

import yaml

DEFAULT_CONFIG: dict = {
    "model": "anthropic",  # "anthropic" | "openai" | "none"
    "moderation_model": None,  # None = the provider's built-in model id
    "store_path": ".doublevision.db",
    "upload_dir": "uploads",
    "public_base_url": "http://localhost:8000/uploads",
    "issue_repo": None,  # owner/name of the GitHub repo that receives moderation alerts
    "assignment_batch_size": 5,
    "review_quota": 5,
    "review_rate_limit": 10,
    "review_rate_window_seconds": 60,
    "moderation_workers": 4,
}

# Config key -> environment variable. Secrets never come from the YAML file.
CREDENTIAL_ENV_VARS = {
    "github_token": "GITHUB_TOKEN",
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
}


def _read_config_file(path: Path) -> dict:
    if not path.is_file():
        return {}
    with path.open() as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping of settings, got {type(data).__name__}.")
    return data


def load_config(config_path: str = ".doublevision.yml", cli_overrides: Optional[dict] = None) -> dict:
    """Build the effective settings.

    Later sources win: DEFAULT_CONFIG, then the YAML file at ``config_path``
    (skipped if absent), then non-None ``cli_overrides``. Credentials are
    always taken from the environment.
    """
    overrides = {k: v for k, v in (cli_overrides or {}).items() if v is not None}
    config = {**DEFAULT_CONFIG, **_read_config_file(Path(config_path)), **overrides}
    for key, env_var in CREDENTIAL_ENV_VARS.items():
        config[key] = os.environ.get(env_var)
    return config

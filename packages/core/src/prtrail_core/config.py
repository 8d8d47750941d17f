import copy
import os
from pathlib import Path
from typing import Optional

import yaml

# Category -> regular expressions matched (re.search) against repo-relative
# paths. A `cross_cutting:` mapping in .prtrail.yml replaces it.
DEFAULT_CROSS_CUTTING: dict = {
    "Dependency manifests": [
        r"(^|/)package\.json$",
        r"(^|/)(package-lock\.json|npm-shrinkwrap\.json|yarn\.lock|pnpm-lock\.yaml|bun\.lockb?)$",
        r"(^|/)(pyproject\.toml|setup\.py|setup\.cfg|Pipfile(\.lock)?|poetry\.lock|uv\.lock)$",
        r"(^|/)requirements[^/]*\.txt$",
        r"(^|/)(go\.mod|go\.sum|Cargo\.toml|Cargo\.lock|Gemfile(\.lock)?|pom\.xml|build\.gradle(\.kts)?)$",
        r"(^|/)(composer\.(json|lock)|mix\.exs|mix\.lock|Package\.swift|pubspec\.yaml)$",
    ],
    "Database migrations": [
        r"(^|/)migrations?/",
        r"\.sql$",
    ],
    "CI/CD": [
        r"(^|/)\.github/",
        r"(^|/)\.gitlab-ci",
        r"(^|/)\.circleci/",
        r"(^|/)Dockerfile",
        r"(^|/)docker-compose",
    ],
    "Configuration": [
        r"(^|/)\.env",
        r"(^|/)[^/]*config\.(ts|js|mjs|cjs|json)$",
        r"(^|/)tsconfig[^/]*\.json$",
        r"\.(ini|cfg)$",
        r"(^|/)\.[^/]+rc(\.json|\.ya?ml|\.js|\.cjs)?$",
        r"(^|/)Makefile$",
    ],
}

DEFAULT_CONFIG: dict = {
    "store": "json",  # "json" (one file per PR, atomic replace) or "sqlite"
    "store_path": None,  # None = backend default (.prtrail/ or .prtrail.db)
    "max_cluster_size": 50,
    "merge_threshold": 8,
    "group_depth": 2,
    "large_change_lines": 100,
    "cross_cutting": DEFAULT_CROSS_CUTTING,
}


def load_config(config_path: str = ".prtrail.yml", cli_overrides: Optional[dict] = None) -> dict:
    """
    Load configuration by merging (in order of precedence):
      1. Built-in defaults
      2. .prtrail.yml in the current directory
      3. CLI argument overrides

    A `cross_cutting` mapping in the file replaces the default pattern set.
    """
    config = copy.deepcopy(DEFAULT_CONFIG)

    path = Path(config_path)
    if path.exists():
        with open(path) as f:
            file_config = yaml.safe_load(f) or {}
        if not isinstance(file_config, dict):
            raise ValueError(f"{config_path} must contain a YAML mapping.")
        config.update(file_config)

    if cli_overrides:
        for key, value in cli_overrides.items():
            if value is not None:
                config[key] = value

    config["github_token"] = os.environ.get("GITHUB_TOKEN")
    config["debug"] = os.environ.get("PRTRAIL_DEBUG") == "1"

    return config

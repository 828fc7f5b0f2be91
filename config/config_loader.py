import yaml
from pathlib import Path
from typing import Dict, Any, Optional


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load the YAML configuration file.

    Args:
        config_path: Optional explicit path to the configuration file. If None,
                     load `config.yaml` from the `config` package directory.

    Returns:
        A dictionary containing the configuration settings.
    """
    path = DEFAULT_CONFIG_PATH if config_path is None else Path(config_path)

    if not path.is_file():
        raise FileNotFoundError(f"Configuration file not found at: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f) or {}

    return config


def config_value(config: Dict[str, Any], dotted_key: str, default: Any = None) -> Any:
    """Look up `section.key` in a nested config dict, returning `default` when absent."""
    node: Any = config
    for part in dotted_key.split('.'):
        if not isinstance(node, dict) or part not in node:
            return default
        node = node[part]
    return default if node is None else node

"""Configuration loader for assetsmith.

Loads the Hydra/OmegaConf configuration shipped in the configurations/ directory.
"""

import logging

from pathlib import Path

from hydra import compose, initialize_config_dir
from omegaconf import DictConfig, OmegaConf

console_logger = logging.getLogger(__name__)

CONFIG_DIR = Path(__file__).parent / "configurations"
CONFIG_NAME = "config"


def load_config(overrides: list[str] | None = None) -> DictConfig:
    """Load assetsmith configuration using Hydra.

    Args:
        overrides: Optional Hydra override strings
            (e.g., ["normalizer.target_dimension=10", "fetch.max_concurrency=8"]).

    Returns:
        Resolved DictConfig with all interpolations applied.
    """
    if overrides is None:
        overrides = []

    with initialize_config_dir(config_dir=str(CONFIG_DIR), version_base=None):
        cfg = compose(config_name=CONFIG_NAME, overrides=overrides)

    OmegaConf.resolve(cfg)

    console_logger.debug(f"Configuration loaded with overrides {overrides}")
    return cfg


def load_default_config() -> DictConfig:
    """Load the shipped YAML directly, without Hydra's global state."""
    return OmegaConf.load(CONFIG_DIR / f"{CONFIG_NAME}.yaml")

import os
import copy
import yaml
from pathlib import Path
from typing import Dict, Any, Optional
from dotenv import load_dotenv
from measurement_client.logger import logger

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "config.yaml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "ripe_atlas": {
        "base_url": "https://atlas.ripe.net/api/v2",
        "stat_url": "https://stat.ripe.net/data/as-overview/data.json",
        "doh_url": "https://dns.google/resolve",
        "measurement_type": "ping",
        "packets": 3,
        "poll_interval": 3.0,
        "max_wait": 60.0,
        "result_cap": 50,
        "request_timeout": 15.0,
        "enrichment_workers": 8,
        "allow_mock": True
    },
    "globalping": {
        "base_url": "https://api.globalping.io",
        "probes_per_country": 3,
        "poll_attempts": 30,
        "poll_interval": 0.5,
        "create_timeout": 15.0,
        "request_timeout": 15.0
    },
    "classification": {
        "warning_latency_ms": 200.0,
        "error_latency_ms": 500.0,
        "warning_loss_percentage": 5.0,
        "error_loss_percentage": 20.0,
        "fast_latency_ms": 30.0,
        "slow_latency_ms": 100.0
    },
    "scopes": {
        "GLOBAL": ["US", "BR", "DE", "JP", "SG", "GB", "CA", "AU"],
        "BR": ["BR", "BR", "BR", "BR", "BR"]
    },
    "limits": {
        "min_probes": 1,
        "max_probes": 1000,
        "default_probes": 50
    },
    "server": {
        "host": "0.0.0.0",
        "port": 5000,
        "history_size": 10
    }
}


def load_config(config_path: Optional[str] = None) -> Dict[str, Any]:
    """Load settings from YAML over the built-in defaults.

    Sections present in the file update the matching default section; unknown
    sections are kept as-is. API credentials are read from the environment
    (and a ``.env`` file when present).
    """
    load_dotenv()

    config = copy.deepcopy(DEFAULT_CONFIG)
    path = Path(config_path or os.getenv("FAROL_CONFIG") or DEFAULT_CONFIG_PATH)

    if path.exists():
        try:
            with open(path, 'r') as f:
                user_config = yaml.safe_load(f) or {}
        except (yaml.YAMLError, IOError) as e:
            logger.error(f"Failed to load configuration from {path}: {e}")
            raise

        if not isinstance(user_config, dict):
            raise ValueError(f"Configuration file {path} must contain a mapping")

        for section, values in user_config.items():
            if section in config and isinstance(values, dict):
                config[section].update(values)
            else:
                config[section] = values
        logger.info(f"Configuration loaded from {path}")
    else:
        logger.info(f"Configuration file {path} not found, using defaults")

    config["credentials"] = {
        "ripe_atlas_api_key": os.getenv("RIPE_ATLAS_API_KEY", ""),
        "globalping_api_token": os.getenv("GLOBALPING_API_TOKEN", "")
    }
    return config

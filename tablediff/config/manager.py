"""
Configuration management.
Single responsibility: load jobs and defaults from YAML.
"""

import os
import re
import yaml
from pathlib import Path
from typing import Dict, Any, Optional, List

from .models import CompareRequest, Settings
from ..core.errors import InvalidRequest
from ..utils.logger import get_logger


logger = get_logger()


_ENV_REFERENCE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Descriptor fields where ${ENV_VAR} references are expanded
EXPANDED_FIELDS = ("target", "url", "connection", "username", "password")


def expand_env(value: Any) -> Any:
    """
    Replace ${NAME} references with environment values.

    Unset variables expand to an empty string and log a warning.
    """
    if not isinstance(value, str):
        return value

    def _replace(match):
        name = match.group(1)
        if name not in os.environ:
            logger.warning("config.env_var.unset", variable=name)
            return ""
        return os.environ[name]

    return _ENV_REFERENCE.sub(_replace, value)


class ConfigManager:
    """
    Manage comparison jobs and defaults.
    """

    def __init__(self, config_path: Optional[Path] = None):
        """
        Initialize config manager.

        Args:
            config_path: Path to configuration file
        """
        self.config_path = Path(config_path or "comparisons.yaml")
        self.config: Dict[str, Any] = {}
        self.settings = Settings()
        self.comparisons: List[CompareRequest] = []

    def load(self) -> Dict[str, Any]:
        """
        Load configuration from file.

        Returns:
            Configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If config is invalid YAML
        """
        if not self.config_path.exists():
            raise FileNotFoundError(f"Config not found: {self.config_path}")

        logger.info("config.loading", file=str(self.config_path))

        with open(self.config_path, encoding="utf-8") as f:
            self.config = yaml.safe_load(f) or {}

        if not isinstance(self.config, dict):
            raise InvalidRequest("config", "must be a YAML mapping")

        self.settings = Settings.from_dict(self.config.get("defaults"))
        self._parse_comparisons()

        logger.info("config.loaded",
                   comparisons=len(self.comparisons),
                   fetch_mode=self.settings.fetch_mode)

        return self.config

    def _parse_comparisons(self):
        """Parse comparison jobs."""
        self.comparisons = []
        base_dir = self.config_path.parent

        for index, job in enumerate(self.config.get("comparisons") or [], start=1):
            if not isinstance(job, dict):
                raise InvalidRequest(f"comparisons[{index}]", "must be a mapping")
            job = dict(job)
            job.setdefault("name", f"comparison_{index}")
            for side in ("source", "target"):
                if isinstance(job.get(side), dict):
                    job[side] = self._expand_descriptor(job[side])
            try:
                self.comparisons.append(CompareRequest.from_dict(job, base_dir))
            except InvalidRequest as e:
                logger.error("config.comparison.invalid",
                            comparison=job["name"],
                            error=e.message)
                raise

    @staticmethod
    def _expand_descriptor(descriptor: Dict[str, Any]) -> Dict[str, Any]:
        expanded = dict(descriptor)
        for name in EXPANDED_FIELDS:
            if name in expanded:
                expanded[name] = expand_env(expanded[name])
        return expanded

    def get_comparison(self, name: str) -> CompareRequest:
        """
        Get comparison job by name.

        Raises:
            KeyError: If no job has that name
        """
        for request in self.comparisons:
            if request.name == name:
                return request
        raise KeyError(f"Comparison not found: {name}")


SAMPLE_CONFIG = """\
# tablediff comparison jobs
defaults:
  default_key: ID
  has_header: true
  query_timeout: 300
  fetch_mode: sequential
  output_dir: reports
  log_level: INFO

comparisons:
  - name: customers_files
    source:
      path: data/customers_old.csv
    target:
      path: data/customers_new.csv
    key: customer_id
    ignore: [updated_at]
    thresholds:
      balance: 0.5

  - name: orders_cross_db
    source:
      target: postgresql://db-old:5432/sales
      username: ${SALES_USER}
      password: ${SALES_PASSWORD}
      query: SELECT * FROM orders
    target:
      target: duckdb:///warehouse.duckdb
      query: SELECT * FROM orders
    key: order_id, line_no
"""


def create_sample_config(path: Path) -> Path:
    """
    Write a commented sample configuration.

    Raises:
        FileExistsError: If the file already exists
    """
    path = Path(path)
    if path.exists():
        raise FileExistsError(f"Config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(SAMPLE_CONFIG, encoding="utf-8")
    logger.info("config.sample.created", file=str(path))
    return path

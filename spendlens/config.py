"""YAML configuration loader for SpendLens.

Loads the seed config files from the config/ directory:
  settings.yaml, vendors.yaml, rules.yaml

Every setting has a module-level default, so a settings.yaml that only
overrides one threshold is valid.
"""

from pathlib import Path

import yaml

DEFAULT_TRANSFER_KEYWORDS = (
    "transfer",
    "payment",
    "credit card",
    "cc payment",
    "autopay",
    "billpay",
    "bill payment",
    "account transfer",
    "internal transfer",
)

DEFAULT_THRESHOLDS = {
    "auto_apply": 0.8,
    "fuzzy_match_floor": 0.7,
    "cache_update_delta": 0.1,
    "high_confidence_global": 0.8,
    "cleanup_confidence_floor": 0.3,
}


class Config:
    """Loads and provides access to all YAML configuration files."""

    def __init__(self, config_dir: Path | str = "config"):
        self.config_dir = Path(config_dir)
        if not self.config_dir.is_dir():
            raise FileNotFoundError(f"Config directory not found: {self.config_dir}")

        self._settings: dict | None = None
        self._vendors: list[dict] | None = None
        self._rules: dict | None = None

    def _load(self, filename: str) -> dict | list:
        path = self.config_dir / filename
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {path}")
        with open(path) as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ValueError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            raise ValueError(f"Empty config file: {path}")
        return data

    @property
    def settings(self) -> dict:
        """settings.yaml, or an empty dict when the file is absent."""
        if self._settings is None:
            if (self.config_dir / "settings.yaml").exists():
                data = self._load("settings.yaml")
                if not isinstance(data, dict):
                    raise ValueError("settings.yaml must be a mapping")
                self._settings = data
            else:
                self._settings = {}
        return self._settings

    @property
    def vendors(self) -> list[dict]:
        if self._vendors is None:
            data = self._load("vendors.yaml")
            self._vendors = data.get("vendors", []) if isinstance(data, dict) else data
        return self._vendors

    @property
    def rules(self) -> dict:
        if self._rules is None:
            self._rules = self._load("rules.yaml")
        return self._rules

    # ── Derived settings ────────────────────────────────────

    @property
    def thresholds(self) -> dict[str, float]:
        merged = dict(DEFAULT_THRESHOLDS)
        for key, value in (self.settings.get("thresholds") or {}).items():
            if key not in DEFAULT_THRESHOLDS:
                raise ValueError(f"Unknown threshold in settings.yaml: {key}")
            merged[key] = float(value)
        return merged

    def threshold(self, name: str) -> float:
        return self.thresholds[name]

    @property
    def transfer_keywords(self) -> tuple[str, ...]:
        keywords = (self.settings.get("transfers") or {}).get("keywords")
        if not keywords:
            return DEFAULT_TRANSFER_KEYWORDS
        return tuple(str(k).lower() for k in keywords)

    @property
    def transfer_window_days(self) -> int:
        return int((self.settings.get("transfers") or {}).get("window_days", 3))

    @property
    def transfer_amount_tolerance(self) -> float:
        return float((self.settings.get("transfers") or {}).get("amount_tolerance", 0.01))

    @property
    def insert_batch_size(self) -> int:
        size = int((self.settings.get("ingest") or {}).get("insert_batch_size", 100))
        if size < 1:
            raise ValueError("ingest.insert_batch_size must be positive")
        return size

    @property
    def pacing_delay(self) -> float:
        return float((self.settings.get("pacing") or {}).get("delay_seconds", 0.1))

    @property
    def bulk_limits(self) -> dict[str, int]:
        bulk = self.settings.get("bulk") or {}
        return {
            "categories": int(bulk.get("max_category_ids", 50)),
            "vendors": int(bulk.get("max_vendor_ids", 100)),
        }

    @property
    def consensus(self) -> dict:
        data = self.settings.get("consensus") or {}
        return {
            "min_corrections": int(data.get("min_corrections", 3)),
            "confidence": float(data.get("confidence", 0.85)),
        }

    @property
    def cleanup_max_age_days(self) -> int:
        return int((self.settings.get("cleanup") or {}).get("max_age_days", 30))

    @property
    def category_hints(self) -> dict[str, str]:
        """Map lower-cased dictionary "category[:subcategory]" → system category name."""
        hints = self.rules.get("category_hints", {}) or {}
        return {str(k).lower(): str(v) for k, v in hints.items()}

    @property
    def pattern_rules(self) -> list[dict]:
        return self.rules.get("pattern_rules", []) or []

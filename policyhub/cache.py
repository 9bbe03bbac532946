"""
Config cache for static business defaults.

Defaults are loaded once from config/defaults.yaml. Rates and intercept
rule sets are never cached here; they are re-read from the database on
every request so admin edits apply immediately.
"""

import os
from typing import Dict, Any, List, Optional
from threading import Lock

import yaml


class ConfigCache:
    """Thread-safe defaults cache."""

    def __init__(self, path: Optional[str] = None):
        self._path = path or os.path.join(
            os.path.dirname(__file__),
            "config",
            "defaults.yaml"
        )
        self._defaults: Optional[Dict[str, Any]] = None
        self._lock = Lock()

    def get_defaults(self) -> Dict[str, Any]:
        """Get cached defaults, loading from disk if not cached."""
        if self._defaults is None:
            with self._lock:
                if self._defaults is None:  # Double-check locking
                    with open(self._path, 'r', encoding='utf-8') as f:
                        self._defaults = yaml.safe_load(f) or {}
        return self._defaults

    def get_intercept_channel(self) -> str:
        """Channel code whose API config carries the intercept rules."""
        channel = os.getenv("INTERCEPT_CHANNEL_CODE")
        if channel:
            return channel
        return self.get_defaults().get("intercept", {}).get("channel_code", "LEXUAN")

    def get_rule_defaults(self) -> Dict[str, int]:
        """Fallback thresholds for rules whose config omits them."""
        defaults = self.get_defaults().get("intercept", {}).get("defaults", {})
        return {
            "min_insured_count": defaults.get("min_insured_count", 3),
            "min_age": defaults.get("min_age", 16),
            "max_age": defaults.get("max_age", 65),
            "max_policies_per_employee": defaults.get("max_policies_per_employee", 1),
        }

    def get_duplicate_statuses(self) -> List[str]:
        intercept = self.get_defaults().get("intercept", {})
        return intercept.get("duplicate_statuses", ["draft", "pending_underwriting", "active"])

    def get_counted_policy_statuses(self) -> List[str]:
        intercept = self.get_defaults().get("intercept", {})
        return intercept.get("counted_policy_statuses", ["active", "in_force"])

    def get_decimal_places(self) -> int:
        return self.get_defaults().get("premium", {}).get("decimal_places", 2)

    def get_application_settings(self) -> Dict[str, Any]:
        applications = self.get_defaults().get("applications", {})
        return {
            "number_prefix": applications.get("number_prefix", "APP"),
            "page_size": applications.get("page_size", 20),
        }

    def clear_cache(self):
        """Clear cached data (useful for testing)."""
        with self._lock:
            self._defaults = None


# Global cache instance
config_cache = ConfigCache()

"""
Feature flags for controlling discovery behavior.
"""

import os
import logging
from typing import Dict, Any

logger = logging.getLogger(__name__)

FALLBACK_POLICY_ALWAYS = "always"
FALLBACK_POLICY_WHEN_UNDERFILLED = "when_underfilled"
_FALLBACK_POLICIES = (FALLBACK_POLICY_ALWAYS, FALLBACK_POLICY_WHEN_UNDERFILLED)


def _env_on(name: str, default: str = 'off') -> bool:
    return os.getenv(name, default).lower() in ['on', 'true', '1']


class FeatureFlags:
    """Feature flags manager."""

    def __init__(self):
        self._flags = {}
        self._load_from_env()

    def _load_from_env(self) -> None:
        """Load feature flags from environment variables."""
        # Search materialization
        self._flags['PLACES_PREFETCH_ALL'] = _env_on('PLACES_PREFETCH_ALL', 'on')

        policy = os.getenv('PLACES_FALLBACK_POLICY', FALLBACK_POLICY_ALWAYS).lower()
        if policy not in _FALLBACK_POLICIES:
            logger.warning("Unknown PLACES_FALLBACK_POLICY %r, using %s", policy, FALLBACK_POLICY_ALWAYS)
            policy = FALLBACK_POLICY_ALWAYS
        self._flags['PLACES_FALLBACK_POLICY'] = policy

        # Cursor guards
        self._flags['ENFORCE_QUERYHASH_ON_CURSOR'] = _env_on('ENFORCE_QUERYHASH_ON_CURSOR')
        self._flags['ENABLE_CURSOR_OP_LOCK'] = _env_on('ENABLE_CURSOR_OP_LOCK')

        # Diagnostics
        self._flags['PLACES_DEBUG'] = _env_on('PLACES_DEBUG')

        logger.info(f"Feature flags loaded: {self._flags}")

    def is_enabled(self, flag_name: str) -> bool:
        """Check if a feature flag is enabled."""
        return bool(self._flags.get(flag_name, False))

    def get_value(self, flag_name: str, default: Any = None) -> Any:
        """Get feature flag value."""
        return self._flags.get(flag_name, default)

    def set_flag(self, flag_name: str, value: Any) -> None:
        """Set feature flag value (runtime override)."""
        self._flags[flag_name] = value
        logger.info(f"Feature flag {flag_name} set to {value}")

    def get_all_flags(self) -> Dict[str, Any]:
        """Get all feature flags."""
        return self._flags.copy()

    def reload_from_env(self) -> None:
        """Reload feature flags from environment."""
        self._load_from_env()
        logger.info("Feature flags reloaded from environment")


# Global instance
_feature_flags = None


def get_feature_flags() -> FeatureFlags:
    """Get global feature flags instance."""
    global _feature_flags
    if _feature_flags is None:
        _feature_flags = FeatureFlags()
    return _feature_flags


def reset_feature_flags() -> None:
    """Reset global feature flags instance."""
    global _feature_flags
    _feature_flags = None


def is_prefetch_all_enabled() -> bool:
    return get_feature_flags().is_enabled('PLACES_PREFETCH_ALL')


def get_fallback_policy() -> str:
    return get_feature_flags().get_value('PLACES_FALLBACK_POLICY', FALLBACK_POLICY_ALWAYS)


def is_places_debug() -> bool:
    return get_feature_flags().is_enabled('PLACES_DEBUG')


def get_cursor_config() -> Dict[str, Any]:
    """Cursor-related flags in one snapshot."""
    flags = get_feature_flags()
    return {
        'enforce_query_hash': flags.is_enabled('ENFORCE_QUERYHASH_ON_CURSOR'),
        'op_lock': flags.is_enabled('ENABLE_CURSOR_OP_LOCK'),
    }

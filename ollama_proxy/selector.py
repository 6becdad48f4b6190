#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
BACKEND SELECTOR - OLLAMA PROXY
===============================

Chooses the single backend that handles a request.

Order of decision:
1. Explicit assignment   -> the assigned backend if enabled (absolute)
2. Memory + availability -> enabled local servers that fit the model
                            and answer the probe, lowest priority wins
3. Degraded fallback     -> first enabled local server, whatever its state

External hosts are only ever reached through an explicit assignment.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from .config import BackendConfig, ProxyConfig
from .estimator import ModelMemoryEstimator
from .exceptions import NoEnabledBackendError
from .prober import AvailabilityProber

logger = logging.getLogger(__name__)

# =============================================================================
# SELECTION RESULT
# =============================================================================

EXPLICIT = "explicit"
RANKED = "ranked"
FALLBACK = "fallback"


@dataclass(frozen=True)
class SelectedBackend:
    """The backend chosen for one request."""
    backend: BackendConfig
    memory_gb: Optional[float]  # None when chosen by explicit assignment
    reason: str                 # explicit, ranked or fallback

    @property
    def name(self) -> str:
        return self.backend.name


# =============================================================================
# MAIN CLASS
# =============================================================================

class BackendSelector:
    """
    Priority-based backend selector.

    Usage:
        selector = BackendSelector(config, estimator, prober)
        selected = selector.select("llama2:70b")
        print(selected.backend.base_url)
    """

    def __init__(
        self,
        config: ProxyConfig,
        estimator: ModelMemoryEstimator,
        prober: AvailabilityProber,
    ):
        self._config = config
        self._estimator = estimator
        self._prober = prober

    def select(self, model_name: Optional[str]) -> SelectedBackend:
        """
        Select a backend for a model.

        Raises:
            NoEnabledBackendError: If automatic selection finds no enabled local server
        """
        assigned = self._explicit_backend(model_name)
        if assigned is not None:
            logger.info(f"Explicit assignment: {model_name} -> {assigned.name}")
            return SelectedBackend(assigned, None, EXPLICIT)

        required_gb = self._estimator.estimate(model_name)
        candidates = [
            backend for backend in self._config.enabled_local_backends()
            if self._fits(backend, required_gb) and self._prober.is_available(backend)
        ]

        if not candidates:
            fallback = self._fallback_backend()
            logger.warning(
                f"No available servers for model {model_name or 'unknown'} "
                f"({required_gb} GB), falling back to {fallback.name}"
            )
            return SelectedBackend(fallback, required_gb, FALLBACK)

        # min() keeps declaration order on equal priority
        selected = min(candidates, key=lambda b: b.rank)
        logger.info(f"Selected {selected.name} server for model {model_name or 'unknown'} ({required_gb} GB)")
        return SelectedBackend(selected, required_gb, RANKED)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _explicit_backend(self, model_name: Optional[str]) -> Optional[BackendConfig]:
        if not model_name:
            return None
        target = self._config.model.explicit_assignments.get(model_name)
        if target is None:
            return None

        backend = self._config.get_backend(target)
        if backend is None:
            logger.warning(f"Model {model_name} is assigned to unknown backend {target}")
            return None
        if not backend.enabled:
            logger.warning(f"Model {model_name} is assigned to disabled backend {target}")
            return None
        return backend

    @staticmethod
    def _fits(backend: BackendConfig, required_gb: float) -> bool:
        return backend.max_memory_gb is None or required_gb <= backend.max_memory_gb

    def _fallback_backend(self) -> BackendConfig:
        # Only local servers; external hosts need an explicit assignment
        enabled = self._config.enabled_local_backends()
        if not enabled:
            raise NoEnabledBackendError()
        return enabled[0]

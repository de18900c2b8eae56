"""
Runtime configuration for the operator library.

Values are read from the environment once, on first use, and can be replaced with
:func:`set_config` (e.g. in tests).
"""

import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Optional

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class GradConfig:
    """
    Configuration shared by every differentiable function.
    """

    # Size of the shared worker pool. None lets the executor decide.
    max_workers: Optional[int] = None
    # When False, every fork-join runs its tasks one after another
    parallel_backward: bool = True
    # Seed of the package-level random generator used by Dropout
    seed: Optional[int] = None

    @classmethod
    def from_env(cls) -> "GradConfig":
        """
        Build a config from the ``GRADFN_MAX_WORKERS``, ``GRADFN_PARALLEL_BACKWARD`` and
        ``GRADFN_SEED`` environment variables, falling back to the defaults.

        Returns:
            GradConfig: The configuration.
        """
        max_workers = os.getenv("GRADFN_MAX_WORKERS")
        parallel = os.getenv("GRADFN_PARALLEL_BACKWARD")
        seed = os.getenv("GRADFN_SEED")
        return cls(
            max_workers=int(max_workers) if max_workers else None,
            parallel_backward=(
                parallel.strip().lower() not in ("0", "false", "no", "off")
                if parallel is not None
                else True
            ),
            seed=int(seed) if seed else None,
        )


_config: Optional[GradConfig] = None
_generator: Optional[np.random.Generator] = None
_executor: Optional[ThreadPoolExecutor] = None
_lock = threading.Lock()


def get_config() -> GradConfig:
    """Return the active configuration, loading it from the environment if needed."""
    global _config
    with _lock:
        if _config is None:
            _config = GradConfig.from_env()
            logger.debug(f"Loaded {_config=}")
        return _config


def set_config(config: Optional[GradConfig]) -> None:
    """
    Replace the active configuration. Passing None reloads it from the environment on next use.

    The package random generator and the worker pool are reset as well, so a new seed or a new
    ``max_workers`` takes effect. Tasks already running in the old pool are left to finish.
    """
    global _config, _generator, _executor
    with _lock:
        _config = config
        _generator = None
        old_executor, _executor = _executor, None
    if old_executor is not None:
        old_executor.shutdown(wait=False)


def get_generator() -> np.random.Generator:
    """Return the package-level random generator, seeded from the active configuration."""
    global _generator
    seed = get_config().seed
    with _lock:
        if _generator is None:
            _generator = np.random.default_rng(seed)
        return _generator


def get_executor() -> ThreadPoolExecutor:
    """
    Return the worker pool shared by every fork-join, creating it on first use.

    The pool is sized from ``GradConfig.max_workers``; with None the executor picks its own
    default.
    """
    global _executor
    max_workers = get_config().max_workers
    with _lock:
        if _executor is None:
            if max_workers is not None:
                max_workers = max(1, max_workers)
            _executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="gradfn")
            logger.debug(f"Started worker pool with {max_workers=}")
        return _executor

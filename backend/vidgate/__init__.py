"""Vidgate - quality gate and adaptive regeneration for AI video scenes.

This module provides startup validation so optional media tooling is
reported before the first scene is scored.
Call validate_dependencies() during application startup.
"""

import importlib.util
import logging

__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def validate_dependencies() -> bool:
    """Check whether video frame extraction is available.

    Image artifacts are scored directly. Video artifacts need OpenCV to pull
    a representative frame; without it video scoring degrades to the
    placeholder assessment.

    Returns:
        True if OpenCV is importable.
    """
    if importlib.util.find_spec("cv2") is None:
        logger.warning(
            "opencv not installed: video artifacts cannot be scored. "
            "Install with: pip install 'vidgate[cv]'"
        )
        return False
    logger.info("opencv available for video frame extraction")
    return True

"""
Threshold Resolver — picks the one threshold that governs a candidate.

Precedence: the most conservative applicable threshold wins. A type or impact
entry missing from the config does not apply and can never pull the result
below the global threshold.
"""

import json
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError as PydanticValidationError

from autopilot_kernel.core.exceptions import ConfigurationError
from autopilot_kernel.models.candidate import ActionType, ImpactLevel
from autopilot_kernel.models.thresholds import ThresholdConfig

logger = logging.getLogger(__name__)


def resolve_effective_threshold(
    action_type: ActionType,
    impact_level: Optional[ImpactLevel],
    config: ThresholdConfig,
) -> int:
    """max(global, type threshold if configured, impact threshold if configured)."""
    applicable = [config.global_threshold]

    type_threshold = config.type_thresholds.get(action_type)
    if type_threshold is not None:
        applicable.append(type_threshold)

    if impact_level is not None:
        impact_threshold = config.impact_thresholds.get(impact_level)
        if impact_threshold is not None:
            applicable.append(impact_threshold)

    return max(applicable)


def load_threshold_config(source: Union[dict, str, Path, ThresholdConfig]) -> ThresholdConfig:
    """
    Validate a complete ThresholdConfig snapshot.

    Accepts a mapping, a JSON string, or a path to a JSON file. Anything
    incomplete or out of range raises ConfigurationError; nothing is
    partially applied.
    """
    if isinstance(source, ThresholdConfig):
        return source

    try:
        if isinstance(source, Path):
            data = json.loads(source.read_text())
        elif isinstance(source, str):
            data = json.loads(source)
        else:
            data = source
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"Threshold configuration could not be read: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("Threshold configuration must be a JSON object")

    # The global threshold is the floor for every decision; refuse to guess it.
    if "global_threshold" not in data:
        raise ConfigurationError("Threshold configuration is missing global_threshold")

    try:
        config = ThresholdConfig.model_validate(data)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Threshold configuration is invalid: {exc}") from exc

    logger.info(
        "threshold_config_loaded",
        extra={"version": config.version, "global_threshold": config.global_threshold},
    )
    return config

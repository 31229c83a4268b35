"""treescore: Local scoring of decision-tree models and ensembles."""

from loguru import logger

from treescore.config import ScoringSettings, get_settings
from treescore.ensemble import Ensemble
from treescore.logging import PACKAGE_NAME, enable_logging
from treescore.model import Model
from treescore.models import CategoryPrediction, EnsembleOptions, PredictionOptions, PredictionResult, Vote
from treescore.multivote import MultiVote

logger.disable(PACKAGE_NAME)  # noqa: RUF067 - Disable logging for the treescore module by default

__all__ = [
    "CategoryPrediction",
    "Ensemble",
    "EnsembleOptions",
    "Model",
    "MultiVote",
    "PredictionOptions",
    "PredictionResult",
    "ScoringSettings",
    "Vote",
    "enable_logging",
    "get_settings",
]

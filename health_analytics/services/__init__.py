"""
Core services for the analytics engine.

This package contains the analyzers, the repository contract and the
orchestrator that composes them into published insights.
"""

from .exercise_impact import ExerciseImpactAnalyzer
from .orchestrator import AnalysisOrchestrator, InsightsCache, PublishedInsights
from .patterns import PatternDetector
from .recommendations import RecommendationGenerator
from .repository import InMemoryTimeWindowRepository, Result, TimeWindowRepository
from .risk import RiskAssessor
from .statistics import StatisticsCalculator
from .trends import TrendPredictor

__all__ = [
    "AnalysisOrchestrator",
    "ExerciseImpactAnalyzer",
    "InMemoryTimeWindowRepository",
    "InsightsCache",
    "PatternDetector",
    "PublishedInsights",
    "RecommendationGenerator",
    "Result",
    "RiskAssessor",
    "StatisticsCalculator",
    "TimeWindowRepository",
    "TrendPredictor",
]

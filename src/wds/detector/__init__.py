from wds.detector.heuristic import HeuristicDetector, HeuristicScores
from wds.detector.resource import ModelResource
from wds.detector.selector import StrategySelection, select_strategy

__all__ = [
    "HeuristicDetector",
    "HeuristicScores",
    "ModelResource",
    "StrategySelection",
    "select_strategy",
]

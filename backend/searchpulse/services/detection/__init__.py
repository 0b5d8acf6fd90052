from searchpulse.services.detection.engine import detect_opportunities
from searchpulse.services.detection.schemas import AnalysisWindow, OpportunityCandidate

__all__ = ["AnalysisWindow", "OpportunityCandidate", "detect_opportunities"]

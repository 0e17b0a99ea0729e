"""Entity intelligence: classification, health scores, relationships and data quality."""

from .classifier import (
    ClassificationResult,
    classify,
    classify_all_pending,
    classify_contract,
    get_contract_classification,
    get_category_distribution,
)
from .health import (
    HealthScoreMetrics,
    compute_health_score,
    calculate_and_store_health_score,
    get_or_compute_health_score,
    score_pending,
    calculate_all_health_scores,
    get_health_score_distribution,
)
from .relationships import (
    PartnerScore,
    MarketShift,
    NetworkAnalysis,
    discover_teaming_partners,
    detect_market_shift,
    find_competitors,
    analyze_network,
    compare_markets,
)
from .quality import AuditResult, run_daily_audit, get_data_quality_score

__all__ = [
    "ClassificationResult",
    "classify",
    "classify_all_pending",
    "classify_contract",
    "get_contract_classification",
    "get_category_distribution",
    "HealthScoreMetrics",
    "compute_health_score",
    "calculate_and_store_health_score",
    "get_or_compute_health_score",
    "score_pending",
    "calculate_all_health_scores",
    "get_health_score_distribution",
    "PartnerScore",
    "MarketShift",
    "NetworkAnalysis",
    "discover_teaming_partners",
    "detect_market_shift",
    "find_competitors",
    "analyze_network",
    "compare_markets",
    "AuditResult",
    "run_daily_audit",
    "get_data_quality_score",
]

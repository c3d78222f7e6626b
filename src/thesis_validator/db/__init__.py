"""Database persistence layer."""

from thesis_validator.db.models import (
    Base,
    CausalEdgeModel,
    ContradictionModel,
    EvidenceHypothesisModel,
    EvidenceModel,
    HypothesisModel,
    QualityMetricModel,
    ResearchJobModel,
    StressTestModel,
)
from thesis_validator.db.session import (
    UnitOfWork,
    create_engine,
    create_session_factory,
    init_db,
)

__all__ = [
    "Base",
    "CausalEdgeModel",
    "ContradictionModel",
    "EvidenceHypothesisModel",
    "EvidenceModel",
    "HypothesisModel",
    "QualityMetricModel",
    "ResearchJobModel",
    "StressTestModel",
    "UnitOfWork",
    "create_engine",
    "create_session_factory",
    "init_db",
]

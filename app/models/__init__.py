from .analysis import Analysis
from .analysis_result import AnalysisResult
from .medical_image import MedicalImage
from .patient import Patient
from .plan import Plan
from .subscription import Subscription
from .user import User

__all__ = [
    "Analysis",
    "AnalysisResult",
    "MedicalImage",
    "Patient",
    "Plan",
    "Subscription",
    "User",
]

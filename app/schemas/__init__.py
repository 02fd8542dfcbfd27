from .analysis import AnalysisDetail, AnalysisListItem, AnalysisStatusResponse
from .auth import (
    AuthResponse,
    ChangePasswordRequest,
    UserCreate,
    UserLogin,
    UserResponse,
    UserStats,
    UserUpdate,
)
from .patient import PatientCreate, PatientResponse
from .subscription import PlanResponse, SubscriptionResponse, UpgradeRequest

__all__ = [
    "AnalysisDetail",
    "AnalysisListItem",
    "AnalysisStatusResponse",
    "AuthResponse",
    "ChangePasswordRequest",
    "PatientCreate",
    "PatientResponse",
    "PlanResponse",
    "SubscriptionResponse",
    "UpgradeRequest",
    "UserCreate",
    "UserLogin",
    "UserResponse",
    "UserStats",
    "UserUpdate",
]

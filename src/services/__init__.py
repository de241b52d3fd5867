from .payment_service import PaymentProof, PaymentService
from .subscription_service import SubscriptionService
from .catalog_service import CatalogService
from .festival_service import FestivalService
from .participation_service import ParticipationService
from .winner_selection_service import WinnerPolicy, WinnerSelectionService
from .claim_service import ClaimService

__all__ = [
    "PaymentProof",
    "PaymentService",
    "SubscriptionService",
    "CatalogService",
    "FestivalService",
    "ParticipationService",
    "WinnerPolicy",
    "WinnerSelectionService",
    "ClaimService",
]

"""Services package for the PropertyPerfect backend."""

from propertyperfect.services.identity_service import IdentityService
from propertyperfect.services.wallet_service import WalletService, LedgerEntryType
from propertyperfect.services.job_service import JobService, JobStatus
from propertyperfect.services.user_service import UserService
from propertyperfect.services.expense_guard import ExpenseGuard
from propertyperfect.services.image_router import ImageRouter, ImageProviderError
from propertyperfect.services.enhance_service import EnhanceService, EnhanceRequest
from propertyperfect.services.purchase_service import PurchaseService
from propertyperfect.services.admin_service import AdminService

__all__ = [
    "IdentityService",
    "WalletService",
    "LedgerEntryType",
    "JobService",
    "JobStatus",
    "UserService",
    "ExpenseGuard",
    "ImageRouter",
    "ImageProviderError",
    "EnhanceService",
    "EnhanceRequest",
    "PurchaseService",
    "AdminService",
]

"""Cache key layout for license data.

Keys are namespaced by what they hold so write paths can invalidate whole
families with a single glob pattern.
"""

from umkm_licensing.business.license_rules import ApplicationStatus, LicenseType, PriorityLevel


def application(application_id: str) -> str:
    return f"license:{application_id}"


def user_applications(user_id: str) -> str:
    return f"user:{user_id}:licenses"


def company_applications(company_id: str) -> str:
    return f"company:{company_id}:licenses"


def status_applications(status: ApplicationStatus) -> str:
    return f"licenses:status:{status.value}"


def type_applications(license_type: LicenseType) -> str:
    return f"licenses:type:{license_type.value}"


def priority_applications(priority: PriorityLevel) -> str:
    return f"licenses:priority:{priority.value}"


def reviewer_applications(reviewer_id: str) -> str:
    return f"reviewer:{reviewer_id}:licenses"


def search(query: str, user_id: str | None = None) -> str:
    return f"licenses:search:{user_id or 'all'}:{query.strip().lower()}"


def expiring(days: int) -> str:
    return f"licenses:expiring:{days}"


def documents(application_id: str) -> str:
    return f"license:{application_id}:documents"


def status_history(application_id: str) -> str:
    return f"license:{application_id}:status_history"


def statistics(user_id: str | None = None) -> str:
    return f"stats:user:{user_id}" if user_id else "stats:global"


# Families dropped after any application write
LIST_PATTERNS = (
    "licenses:status:*",
    "licenses:type:*",
    "licenses:priority:*",
    "licenses:search:*",
    "licenses:expiring:*",
    "reviewer:*",
    "stats:*",
)

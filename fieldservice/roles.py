"""
Role names and the capability tiers built from them.

Every permission decision in the engine goes through these sets; routers and
services never compare role strings on their own.
"""

SUPER_ADMIN = "Super Admin"
SERVICE_ADMIN = "Service Admin"
SALES_ADMIN = "Sales Admin"
SERVICE_MANAGER = "Service Manager"
SALES_MANAGER = "Sales Manager"
SERVICE_TEAM_LEAD = "Service Team Lead"
SALES_TEAM_LEAD = "Sales Team Lead"
TECHNICIAN = "Technician"
SALESMAN = "Salesman"

ALL_ROLES = frozenset({
    SUPER_ADMIN, SERVICE_ADMIN, SALES_ADMIN,
    SERVICE_MANAGER, SALES_MANAGER,
    SERVICE_TEAM_LEAD, SALES_TEAM_LEAD,
    TECHNICIAN, SALESMAN,
})

# Requests created by these roles need a sales approval before the service approval
SALES_TIER_CREATORS = frozenset({SALESMAN, SALES_TEAM_LEAD, SALES_MANAGER})

SALES_APPROVERS = frozenset({SALES_ADMIN, SUPER_ADMIN})
SERVICE_APPROVERS = frozenset({SUPER_ADMIN, SERVICE_ADMIN, SERVICE_MANAGER, SERVICE_TEAM_LEAD})

# Manager tier: assign, reassign, acknowledge completion
ASSIGNMENT_PRIVILEGED = frozenset({SUPER_ADMIN, SERVICE_ADMIN, SERVICE_MANAGER})

STOCK_PRIVILEGED = frozenset({SUPER_ADMIN, SERVICE_ADMIN, SERVICE_MANAGER})

SUBMITTERS = ALL_ROLES - {TECHNICIAN}


def is_sales_creator(role: str) -> bool:
    return role in SALES_TIER_CREATORS


def can_assign(role: str) -> bool:
    return role in ASSIGNMENT_PRIVILEGED


def can_manage_stock(role: str) -> bool:
    return role in STOCK_PRIVILEGED


def can_submit(role: str) -> bool:
    return role in SUBMITTERS

# (name, description, permission_level, is_approver, is_committee, is_committee_head)
DEFAULT_ROLES = [
    ("Super Admin", "Full system access", 100, True, False, False),
    ("Admin", "Building administration", 90, True, False, False),
    ("President", "PST committee chair", 80, True, True, True),
    ("Secretary", "PST committee secretary", 80, True, True, False),
    ("Treasurer", "PST committee treasurer", 80, True, True, False),
    ("Committee Delegate", "Deputy reviewer acting for the committee", 70, True, False, False),
    ("Owner", "Apartment owner", 50, False, False, False),
    ("Tenant", "Apartment tenant", 30, False, False, False),
    ("Resident", "Household member", 10, False, False, False),
]

# Higher number means more privileges
INSTANT_APPROVAL_RANK = 80
OVERRIDE_RANK = 90

MAX_OWNERS_PER_APARTMENT = 2
MAX_TENANTS_PER_APARTMENT = 2

# Request kinds accepted by the approval surface
REQUEST_KINDS = (
    "ownership_relationship",
    "tenant_relationship",
    "ownership_transfer",
    "user_registration",
)

REQUEST_TABLES = {
    "ownership_relationship": "ownership_relationships",
    "tenant_relationship": "tenant_relationships",
    "ownership_transfer": "ownership_transfers",
    "user_registration": "users",
}

NOTIFICATION_PRIORITIES = ("low", "medium", "high", "critical")

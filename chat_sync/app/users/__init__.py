from .identity import (
    Identity,
    IdentityAdapter,
    StoreIdentityAdapter,
    UserProfile,
    UserRole,
    can_moderate,
)

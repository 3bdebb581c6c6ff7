from .transitions import Capability


WRITE_OFF_PERMISSION = 'stock.write_off_unit'


def capability_for(user) -> Capability:
    """Superusers and holders of stock.write_off_unit may scrap units or mark them lost."""
    if user is not None and user.is_authenticated and user.is_active:
        if user.is_superuser or user.has_perm(WRITE_OFF_PERMISSION):
            return Capability.ELEVATED
    return Capability.STANDARD

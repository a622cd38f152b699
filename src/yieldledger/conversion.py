"""Share/asset conversion math with virtual-offset padding.

All functions are pure and operate on integers. The virtual offsets are added
to both sides of every ratio so that a donation made before any shares exist
cannot move the share price far enough to under-mint a later depositor.
"""

from __future__ import annotations

from yieldledger.domain.models import Rounding
from yieldledger.errors import NoSharesExist

VIRTUAL_SHARES = 1
VIRTUAL_ASSETS = 1


def mul_div(value: int, numerator: int, denominator: int, rounding: Rounding) -> int:
    """Return ``value * numerator / denominator`` rounded in the given direction."""
    if denominator <= 0:
        raise ZeroDivisionError("denominator must be positive")
    quotient, remainder = divmod(value * numerator, denominator)
    if rounding is Rounding.UP and remainder:
        quotient += 1
    return quotient


def assets_to_shares(
    assets: int,
    share_supply: int,
    live_assets: int,
    rounding: Rounding,
    *,
    virtual_shares: int = VIRTUAL_SHARES,
    virtual_assets: int = VIRTUAL_ASSETS,
) -> int:
    """Convert an asset amount into shares for the given pool state.

    An empty pool (no shares, or no live assets) mints 1:1.
    """
    if share_supply == 0 or live_assets == 0:
        return assets
    return mul_div(
        assets,
        share_supply + virtual_shares,
        live_assets + virtual_assets,
        rounding,
    )


def shares_to_assets(
    shares: int,
    share_supply: int,
    live_assets: int,
    rounding: Rounding,
    *,
    virtual_shares: int = VIRTUAL_SHARES,
    virtual_assets: int = VIRTUAL_ASSETS,
) -> int:
    """Convert a share amount into assets; requires outstanding shares."""
    if share_supply == 0:
        raise NoSharesExist("pool has no shares outstanding")
    return mul_div(
        shares,
        live_assets + virtual_assets,
        share_supply + virtual_shares,
        rounding,
    )


def principal_portion(shares: int, principal: int, share_supply: int) -> int:
    """Principal removed from the accounting base when ``shares`` are burned.

    Always rounds down so residual yield stays in the pool; a full exit takes
    the whole principal with no rounding residue.
    """
    if share_supply == 0:
        raise NoSharesExist("pool has no shares outstanding")
    if shares == share_supply:
        return principal
    return mul_div(shares, principal, share_supply, Rounding.DOWN)

"""
Action key resolution.

Maps (identity, context data) to the key a policy is stored under.
Two tiers: context data longer than the threshold selects the premium
policy, everything else the standard one. Pure: the same inputs always
give the same key, nothing is read or written.
"""

STANDARD_KEY = "standard-user-config"
PREMIUM_KEY = "premium-user-config"
DEFAULT_THRESHOLD = 10


class ActionKeyResolver:
    """Two-tier classifier over the length of the caller's context data.

    Length <= threshold -> standard_key, length > threshold -> premium_key."""

    def __init__(
        self,
        threshold: int = DEFAULT_THRESHOLD,
        standard_key: str = STANDARD_KEY,
        premium_key: str = PREMIUM_KEY,
    ):
        if threshold < 0:
            raise ValueError("threshold must be non-negative")
        if standard_key == premium_key:
            raise ValueError("standard and premium keys must differ")
        self.threshold = threshold
        self.standard_key = standard_key
        self.premium_key = premium_key

    def resolve(self, identity: str, context_data: str) -> str:
        # identity is part of the contract but does not affect the tier.
        if len(context_data) > self.threshold:
            return self.premium_key
        return self.standard_key

    def __repr__(self) -> str:
        return (
            f"ActionKeyResolver(threshold={self.threshold}, "
            f"standard_key={self.standard_key!r}, premium_key={self.premium_key!r})"
        )

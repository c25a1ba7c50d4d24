"""
Data access: social graph profiles and friendships.
"""

from chat_gateway.components.data.social_graph import (
    FriendshipState,
    SocialGraphGateway,
    SocialGraphLookupError,
    SqlSocialGraphRepository,
    TTLCache,
    UserProfile,
)

__all__ = [
    "FriendshipState",
    "SocialGraphGateway",
    "SocialGraphLookupError",
    "SqlSocialGraphRepository",
    "TTLCache",
    "UserProfile",
]

from wds.triggers.bus import NotificationBus, PublishResult, SubscriptionHandle
from wds.triggers.cooldown import CooldownGate

__all__ = ["CooldownGate", "NotificationBus", "PublishResult", "SubscriptionHandle"]

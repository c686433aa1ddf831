"""Publishing workflow."""

from .models import PublishRequest, PublishResult, context_id_for
from .publisher import AdvertisementPublisher

__all__ = ["AdvertisementPublisher", "PublishRequest", "PublishResult", "context_id_for"]

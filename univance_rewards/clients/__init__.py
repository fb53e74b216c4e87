from .base import ServiceClient
from .users import UserServiceClient
from .points import PointsServiceClient
from .notifications import NotificationClient

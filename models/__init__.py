# Importing the models here registers every table with SQLAlchemy's metadata.
from .user import User
from .plan import Plan, UNLIMITED
from .subscription import Subscription
from .stream import Stream

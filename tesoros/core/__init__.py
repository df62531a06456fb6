from tesoros.core.config import settings
from tesoros.core.database import get_db, Base, init_db
from tesoros.core.unit_of_work import UnitOfWork, ProductLockRegistry

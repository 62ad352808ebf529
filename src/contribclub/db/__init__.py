from .dal import CACHE_KEY, Store
from .engine import engine
from .models import Base

__all__ = ["Base", "CACHE_KEY", "Store", "engine"]

# medkit/models/__init__.py
from .user import User
from .drug import Drug, DrugForm

__all__ = [
    "User",
    "Drug",
    "DrugForm",
]

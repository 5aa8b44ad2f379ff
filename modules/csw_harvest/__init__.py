# Keep this TINY so importing the package never drags in heavy deps.
from . import lib  # so: from modules.csw_harvest import lib
from .main import run, validate_kwargs

__all__ = ["lib", "run", "validate_kwargs"]

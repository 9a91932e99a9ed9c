# Importing the package registers the built-in collectors (via lib) and exposes run().
from . import lib  # so: from modules.job_feed import lib
from .main import run  # so: from modules.job_feed import run

__all__ = ["lib", "run"]

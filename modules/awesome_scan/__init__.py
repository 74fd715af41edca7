# Keep this TINY so importing the package stays cheap.
from . import lib  # so: from modules.awesome_scan import lib
from .main import run  # so: from modules.awesome_scan import run

__all__ = ["lib", "run"]

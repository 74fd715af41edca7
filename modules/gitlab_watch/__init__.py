# Keep this TINY so importing the package stays cheap.
from . import lib  # so: from modules.gitlab_watch import lib
from .main import run  # so: from modules.gitlab_watch import run

__all__ = ["lib", "run"]

from .schema import *
from .constants import *
from .parameters import *

from .data import *
from .modules import *
from .models import *

from importlib.metadata import version

__version__ = version("carefree-recommend")

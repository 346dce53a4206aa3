from .base import *
from .wnd import *

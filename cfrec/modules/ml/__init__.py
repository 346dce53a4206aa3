from .lookups import *
from .fcnn import *
from .wnd import *

from .common import *
from .activations import *
from .ml import *

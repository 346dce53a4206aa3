from .features import *

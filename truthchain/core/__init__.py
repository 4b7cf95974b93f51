"""
Core infrastructure modules for errors, blob storage, and utilities.
"""

from .errors import *
from .storage import *
from .utils import *

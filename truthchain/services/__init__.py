"""
Media services for normalization, hashing, integrity proofs, indexing, and guards.
"""

from .hashing import *
from .normalizer import *
from .proofs import *
from .indexing import *
from .similarity import *
from .reputation import *

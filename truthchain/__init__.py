"""
TruthChain - Content-Addressed Media Attestation

Registers canonical content hashes of media on an immutable ledger, stores
integrity proofs in blob storage, and verifies media against both.
"""

__version__ = "1.0.0"
__author__ = "TruthChain Team"
__description__ = "Content-Addressed Media Attestation Service"

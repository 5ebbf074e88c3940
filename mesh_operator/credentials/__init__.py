"""Scoped credential synthesis for provider connections."""

from .synthesizer import CredentialSynthesizer, ScopedCredential, SecretCoordinates

__all__ = ["CredentialSynthesizer", "ScopedCredential", "SecretCoordinates"]

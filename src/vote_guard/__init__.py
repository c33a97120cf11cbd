"""Vote guard - biometric duplicate-vote prevention for the voting portal client."""

__version__ = "0.1.0"

"""JD Fit Copilot — live interview evidence scoring against a job description."""

__version__ = "0.1.0"

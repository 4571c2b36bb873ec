"""
Backend package for the BGaze Monitoring study app.

This package provides a FastAPI application for survey profiles, e-mail
OTP sign-in with signed session tokens, and S3 file storage, with
in-memory backends for local development and tests.
"""

"""
Services used by the scanner station.

This package provides:
- REST client for the practicum backend
- Face enrollment (sample capture and two-phase submission)
"""

__all__ = [
	'PracticumApiClient',
	'BackendError',
	'EnrollmentService',
	'EnrollmentRegistry',
]

# Submodules are imported explicitly where they are used so importing the
# package stays cheap.

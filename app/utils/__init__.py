"""
Utils package
"""
from .data_utils import (
    get_request_data,
    error_response,
)

__all__ = [
    'get_request_data',
    'error_response',
]
